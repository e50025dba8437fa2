import io

import pytest
from fastapi.testclient import TestClient

from conftest import PHOTO_BYTES
from context import AppContext
from main import _read_capped, create_app
from storage import ObjectStorage, StorageError
from wizard import WizardRegistry


class OfflineStorage(ObjectStorage):
    def upload(self, bucket, key, data, content_type=None, upsert=False):
        raise StorageError("bucket hazard-photos unreachable")


def _photo(name="pothole.jpg", data=PHOTO_BYTES, content_type="image/jpeg"):
    return {"file": (name, data, content_type)}


def _walk_to_review(client, **details):
    wid = client.post("/wizard").json()["id"]
    assert client.put(f"/wizard/{wid}/photo", files=_photo()).status_code == 200
    assert client.post(f"/wizard/{wid}/next").json()["step"] == 2
    client.patch(f"/wizard/{wid}", json={"location": "Main St"})
    assert client.post(f"/wizard/{wid}/next").json()["step"] == 3
    client.patch(f"/wizard/{wid}", json={"hazard_type": "Pothole", "category": "Roads", "severity": "High", **details})
    assert client.post(f"/wizard/{wid}/next").json()["step"] == 4
    return wid


def test_open_wizard(client):
    r = client.post("/wizard")
    assert r.status_code == 201
    state = r.json()
    assert state["step"] == 1
    assert state["draft"]["photo"] is None
    assert state["draft"]["category"] == "Roads"
    assert state["draft"]["severity"] == "Medium"


def test_unknown_wizard(client):
    assert client.get("/wizard/nope").status_code == 404


def test_capture_gate_over_http(client):
    wid = client.post("/wizard").json()["id"]
    r = client.post(f"/wizard/{wid}/next")
    assert r.status_code == 422
    assert r.json()["detail"] == {"message": "Please upload a photo", "step": 1}


def test_empty_location_blocks_step_two(client):
    wid = client.post("/wizard").json()["id"]
    client.put(f"/wizard/{wid}/photo", files=_photo())
    client.post(f"/wizard/{wid}/next")
    client.patch(f"/wizard/{wid}", json={"location": ""})

    r = client.post(f"/wizard/{wid}/next")
    assert r.status_code == 422
    assert r.json()["detail"]["message"] == "Please enter a location"
    assert client.get(f"/wizard/{wid}").json()["step"] == 2


def test_photo_preview_and_removal(client):
    wid = client.post("/wizard").json()["id"]
    state = client.put(f"/wizard/{wid}/photo", files=_photo()).json()
    assert state["draft"]["photo"]["preview_url"] == f"/wizard/{wid}/photo"
    preview = client.get(f"/wizard/{wid}/photo")
    assert preview.content == PHOTO_BYTES
    assert preview.headers["content-type"] == "image/jpeg"

    assert client.delete(f"/wizard/{wid}/photo").json()["draft"]["photo"] is None
    assert client.get(f"/wizard/{wid}/photo").status_code == 404


def test_oversized_photo_never_reaches_draft(client, ctx):
    wid = client.post("/wizard").json()["id"]
    big = b"\x00" * (ctx.settings.max_photo_bytes + 1)
    r = client.put(f"/wizard/{wid}/photo", files=_photo(data=big))
    assert r.status_code == 400
    assert r.json()["detail"] == "File size must be less than 10MB"
    assert client.get(f"/wizard/{wid}").json()["draft"]["photo"] is None


def test_non_image_rejected(client):
    wid = client.post("/wizard").json()["id"]
    r = client.put(f"/wizard/{wid}/photo", files=_photo(name="notes.txt", content_type="text/plain"))
    assert r.status_code == 400
    assert r.json()["detail"] == "Please upload an image file"


def test_invalid_enum_value_rejected(client):
    wid = client.post("/wizard").json()["id"]
    assert client.patch(f"/wizard/{wid}", json={"severity": "Extreme"}).status_code == 422


def test_previous_keeps_fields(client):
    wid = _walk_to_review(client, description="Deep hole near the bus stop")
    state = client.post(f"/wizard/{wid}/previous").json()
    assert state["step"] == 3
    state = client.post(f"/wizard/{wid}/previous").json()
    assert state["step"] == 2
    assert state["draft"]["location"] == "Main St"
    assert state["draft"]["description"] == "Deep hole near the bus stop"
    assert state["draft"]["photo"]["size"] == len(PHOTO_BYTES)


def test_submit_end_to_end(client, store, register):
    user, headers = register()
    wid = _walk_to_review(client)

    r = client.post(f"/wizard/{wid}/submit", headers=headers)
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["step"] == 5
    assert body["title"] == "Report Submitted!"
    assert body["ticket_id"] == body["report"]["ticket_id"]
    assert body["report"]["urgency_score"] == 8
    assert body["report"]["status"] == "sent"
    assert body["draft"]["photo"] is None

    stored = store.find_one("reports", {"ticket_id": body["ticket_id"]})
    assert stored["user_id"] == user["id"]
    assert stored["urgency_score"] == 8

    photo_path = body["report"]["photo_url"].replace("http://testserver", "")
    assert client.get(photo_path).content == PHOTO_BYTES


def test_submit_from_earlier_step_conflicts(client, register):
    _, headers = register()
    wid = client.post("/wizard").json()["id"]
    r = client.post(f"/wizard/{wid}/submit", headers=headers)
    assert r.status_code == 409


def test_submit_without_identity_redirects_and_drops_draft(client, store):
    wid = _walk_to_review(client)
    r = client.post(f"/wizard/{wid}/submit")
    assert r.status_code == 401
    assert r.json()["detail"] == {"message": "Please sign in to submit a report", "redirect": "/login"}
    assert client.get(f"/wizard/{wid}").status_code == 404
    assert store.count_documents("reports") == 0


def test_submit_with_bad_token_counts_as_signed_out(client):
    wid = _walk_to_review(client)
    r = client.post(f"/wizard/{wid}/submit", headers={"Authorization": "Bearer not-a-token"})
    assert r.status_code == 401


def test_storage_failure_returns_to_review(store, settings):
    broken = AppContext(
        settings=settings,
        store=store,
        storage=OfflineStorage(settings.storage_root, settings.public_base_url),
    )
    client = TestClient(create_app(broken))
    token = client.post("/auth/register", json={"email": "a@example.com", "password": "pw"}).json()["token"]
    wid = _walk_to_review(client)

    r = client.post(f"/wizard/{wid}/submit", headers={"Authorization": f"Bearer {token}"})
    assert r.status_code == 502
    detail = r.json()["detail"]
    assert detail["step"] == 4
    assert detail["message"].startswith("Failed to submit report:")

    state = client.get(f"/wizard/{wid}").json()
    assert state["step"] == 4
    assert state["submitting"] is False
    assert state["error"] == detail["message"]
    assert state["draft"]["location"] == "Main St"
    assert store.count_documents("reports") == 0


def test_reset_after_submit(client, register):
    _, headers = register()
    wid = _walk_to_review(client)
    client.post(f"/wizard/{wid}/submit", headers=headers)

    assert client.post(f"/wizard/{wid}/previous").status_code == 409
    state = client.post(f"/wizard/{wid}/reset").json()
    assert state["step"] == 1
    assert state["ticket_id"] is None
    assert state["draft"]["location"] == ""


def test_close_wizard(client):
    wid = client.post("/wizard").json()["id"]
    assert client.delete(f"/wizard/{wid}").json() == {"ok": True}
    assert client.delete(f"/wizard/{wid}").status_code == 404


# ---------- One-shot submission ----------

def test_one_shot_report(client, register):
    _, headers = register()
    r = client.post(
        "/reports",
        headers=headers,
        files={"photo": ("flood.png", PHOTO_BYTES, "image/png")},
        data={"location": "River Rd", "hazard_type": "Flooding", "category": "Water", "severity": "Critical"},
    )
    assert r.status_code == 201, r.text
    assert r.json()["urgency_score"] == 10
    assert r.json()["photo_url"].endswith(".png")


@pytest.mark.parametrize(
    "data, message",
    [
        ({"hazard_type": "Debris"}, "Please enter a location"),
        ({"location": "River Rd"}, "Please select a hazard type"),
    ],
)
def test_one_shot_report_gates(client, register, data, message):
    _, headers = register()
    r = client.post("/reports", headers=headers, files={"photo": ("x.jpg", PHOTO_BYTES, "image/jpeg")}, data=data)
    assert r.status_code == 422
    assert r.json()["detail"] == message


def test_one_shot_report_requires_token(client):
    r = client.post("/reports", files={"photo": ("x.jpg", PHOTO_BYTES, "image/jpeg")}, data={"location": "x"})
    assert r.status_code == 401


@pytest.mark.parametrize("field", ["location", "category", "severity", "description"])
def test_null_draft_field_is_a_validation_error(client, field):
    wid = client.post("/wizard").json()["id"]
    r = client.patch(f"/wizard/{wid}", json={field: None})
    assert r.status_code == 422
    draft = client.get(f"/wizard/{wid}").json()["draft"]
    assert (draft["location"], draft["category"], draft["severity"], draft["description"]) == ("", "Roads", "Medium", "")


def test_signed_out_submit_leaves_in_flight_session_alone(client, ctx):
    wid = _walk_to_review(client)
    ctx.wizards.get(wid).begin_submit()
    r = client.post(f"/wizard/{wid}/submit")
    assert r.status_code == 409
    session = ctx.wizards.get(wid)
    assert session is not None
    assert session.submitting


def test_anonymous_wizards_are_capped(client, ctx):
    ctx.wizards = WizardRegistry(max_sessions=20)
    ids = [client.post("/wizard").json()["id"] for _ in range(200)]
    assert len(ctx.wizards) == 20
    assert client.get(f"/wizard/{ids[0]}").status_code == 404
    assert client.get(f"/wizard/{ids[-1]}").status_code == 200


def test_uploads_are_read_only_up_to_the_limit():
    stream = io.BytesIO(b"\x00" * 5000)
    assert len(_read_capped(stream, 100)) == 101
    assert _read_capped(io.BytesIO(b"abc"), 100) == b"abc"
