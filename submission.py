"""Submission coordinator - turns a finished Draft into a stored report.

Order is fixed: photo upload, ticket id, urgency score, report insert.
The record store offers no transaction spanning the object store, so a
failed insert is followed by removal of the photo it would have referenced.
"""

from __future__ import annotations

import logging
import secrets
import string
import time
from typing import Callable, Optional

from auth import CurrentUser
from database import RecordStore, RecordStoreError
from schemas import Draft, Report
from storage import HAZARD_PHOTOS, ObjectStorage, StorageError
from urgency import urgency_score
from wizard import Step, can_advance

logger = logging.getLogger(__name__)

TICKET_PREFIX = "CG"
TICKET_ALPHABET = string.digits + string.ascii_uppercase
TICKET_SUFFIX_LEN = 4


class SubmissionError(Exception):
    """A collaborator failed while the report was being persisted."""


class IncompleteDraft(ValueError):
    """The draft is missing a required field."""


class AuthenticationRequired(Exception):
    """No signed-in identity to attach the report to."""


def to_base36(n: int) -> str:
    if n < 0:
        raise ValueError("negative values have no base36 ticket form")
    digits = []
    while True:
        n, r = divmod(n, 36)
        digits.append(TICKET_ALPHABET[r])
        if n == 0:
            return "".join(reversed(digits))


def generate_ticket_id(now_ms: Optional[int] = None) -> str:
    """CG-<base36 epoch millis>-<4 random base36 chars>, upper case."""
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    suffix = "".join(secrets.choice(TICKET_ALPHABET) for _ in range(TICKET_SUFFIX_LEN))
    return f"{TICKET_PREFIX}-{to_base36(now_ms)}-{suffix}"


def check_draft(draft: Draft) -> None:
    """Run every step gate in order; raise on the first that fails."""
    if draft.photo is None:
        raise IncompleteDraft("Photo is required")
    for step in (Step.CAPTURE, Step.LOCATION, Step.DETAILS):
        check = can_advance(step, draft)
        if not check.ok:
            raise IncompleteDraft(check.message)


class SubmissionCoordinator:
    def __init__(self, store: RecordStore, storage: ObjectStorage, clock: Callable[[], float] = time.time):
        self.store = store
        self.storage = storage
        self._clock = clock

    def submit(self, draft: Draft, user: Optional[CurrentUser]) -> Report:
        if user is None:
            raise AuthenticationRequired("Please sign in to submit a report")
        check_draft(draft)
        now_ms = int(self._clock() * 1000)

        logger.info("Step 1: uploading photo for %s", user.id)
        key = f"{user.id}/{now_ms}.{draft.photo.extension}"
        try:
            self.storage.upload(HAZARD_PHOTOS, key, draft.photo.data, draft.photo.content_type)
            photo_url = self.storage.public_url(HAZARD_PHOTOS, key)
        except StorageError as e:
            logger.error("Photo upload failed: %s", e)
            raise SubmissionError(str(e)) from e

        logger.info("Step 2: generating ticket id")
        ticket_id = generate_ticket_id(now_ms)

        logger.info("Step 3: calculating urgency score")
        score = urgency_score(draft.severity, draft.category)

        logger.info("Step 4: inserting report %s (urgency %d)", ticket_id, score)
        report = Report(
            ticket_id=ticket_id,
            user_id=user.id,
            hazard_type=draft.hazard_type,
            category=draft.category,
            severity=draft.severity,
            urgency_score=score,
            description=draft.description,
            location_lat=draft.latitude or None,
            location_lon=draft.longitude or None,
            location_address=draft.location,
            photo_url=photo_url,
            status="sent",
        )
        try:
            report_id = self.store.create_document("reports", report.model_dump(exclude={"id", "created_at"}))
        except RecordStoreError as e:
            logger.error("Report insert failed for %s: %s", ticket_id, e)
            self._remove_orphan(key)
            raise SubmissionError(str(e)) from e

        logger.info("Report %s submitted", ticket_id)
        return report.model_copy(update={"id": report_id})

    def _remove_orphan(self, key: str) -> None:
        try:
            self.storage.remove(HAZARD_PHOTOS, key)
        except StorageError:
            logger.exception("Orphaned photo %s/%s could not be removed", HAZARD_PHOTOS, key)
