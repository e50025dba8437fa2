"""Report wizard - draft state, step gates, and the step state machine.

Capture(1) -> Location(2) -> Details(3) -> Review(4) -> Submitted(5).
Forward moves pass through can_advance(); backward moves are ungated.
While a submission is in flight the session sits on Review with
`submitting` set and refuses every other transition.
"""

from __future__ import annotations

import logging
import secrets
import time
from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Callable, Dict, Optional

from schemas import Draft, DraftUpdate, Photo

logger = logging.getLogger(__name__)

__all__ = ["Step", "StepCheck", "WizardSession", "WizardRegistry", "WizardStateError", "can_advance"]


class Step(IntEnum):
    CAPTURE = 1
    LOCATION = 2
    DETAILS = 3
    REVIEW = 4
    SUBMITTED = 5


STEP_TITLES = {
    Step.CAPTURE: "Capture the Hazard",
    Step.LOCATION: "Confirm Location",
    Step.DETAILS: "Describe the Issue",
    Step.REVIEW: "Review & Submit",
    Step.SUBMITTED: "Report Submitted!",
}


class WizardStateError(Exception):
    """The requested transition is not allowed from the current state."""


@dataclass(frozen=True)
class StepCheck:
    ok: bool
    message: Optional[str] = None


def can_advance(step: int, draft: Draft) -> StepCheck:
    """Gate for leaving `step`. Pure; moving the step index is up to the caller."""
    if step == Step.CAPTURE and draft.photo is None:
        return StepCheck(False, "Please upload a photo")
    if step == Step.LOCATION and not draft.location:
        return StepCheck(False, "Please enter a location")
    if step == Step.DETAILS and not draft.hazard_type:
        return StepCheck(False, "Please select a hazard type")
    return StepCheck(True)


class WizardSession:
    """Owns one Draft and the step index. All mutations go through here."""

    def __init__(self, session_id: str, clock: Callable[[], float] = time.monotonic):
        self.id = session_id
        self._clock = clock
        self.touched_at = clock()
        self.completed_at: Optional[float] = None
        self.draft = Draft()
        self.step = Step.CAPTURE
        self.submitting = False
        self.ticket_id: Optional[str] = None
        self.error: Optional[str] = None

    def touch(self) -> None:
        self.touched_at = self._clock()

    def _require_editable(self) -> None:
        if self.submitting:
            raise WizardStateError("A submission is in progress")
        if self.step == Step.SUBMITTED:
            raise WizardStateError("Report already submitted; start a new report")

    def attach_photo(self, photo: Photo) -> None:
        self._require_editable()
        self.draft.photo = photo

    def remove_photo(self) -> None:
        self._require_editable()
        self.draft.photo = None

    def update(self, changes: DraftUpdate) -> None:
        self._require_editable()
        for field, value in changes.model_dump(exclude_unset=True).items():
            setattr(self.draft, field, value)

    def next(self) -> StepCheck:
        self._require_editable()
        check = can_advance(self.step, self.draft)
        if check.ok and self.step < Step.REVIEW:
            self.step = Step(self.step + 1)
        return check

    def previous(self) -> None:
        self._require_editable()
        if self.step > Step.CAPTURE:
            self.step = Step(self.step - 1)

    def begin_submit(self) -> None:
        if self.submitting:
            raise WizardStateError("A submission is already in flight")
        if self.step != Step.REVIEW:
            raise WizardStateError("Reports can only be submitted from the review step")
        self.submitting = True
        self.error = None

    def complete(self, ticket_id: str) -> None:
        self.submitting = False
        self.step = Step.SUBMITTED
        self.ticket_id = ticket_id
        self.draft = Draft()
        self.completed_at = self._clock()

    def fail(self, message: str) -> None:
        self.submitting = False
        self.step = Step.REVIEW
        self.error = message

    def reset(self) -> None:
        if self.submitting:
            raise WizardStateError("A submission is in progress")
        self.draft = Draft()
        self.step = Step.CAPTURE
        self.ticket_id = None
        self.error = None
        self.completed_at = None

    def snapshot(self, photo_url: Optional[str] = None) -> Dict[str, Any]:
        photo = self.draft.photo
        return {
            "id": self.id,
            "step": int(self.step),
            "title": STEP_TITLES[self.step],
            "submitting": self.submitting,
            "ticket_id": self.ticket_id,
            "error": self.error,
            "draft": {
                "photo": None if photo is None else {
                    "filename": photo.filename,
                    "content_type": photo.content_type,
                    "size": len(photo.data),
                    "preview_url": photo_url,
                },
                **self.draft.model_dump(exclude={"photo"}),
            },
        }


class WizardRegistry:
    """In-process wizard sessions keyed by an unguessable id.

    Sessions idle for `idle_seconds` are dropped, as are sessions left on
    Submitted for `submitted_seconds`. Sessions with a submission in flight
    are never dropped. Expired sessions are swept whenever one is created,
    and at `max_sessions` the least recently used idle session makes room.
    """

    def __init__(
        self,
        idle_seconds: float = 60 * 60,
        submitted_seconds: float = 5 * 60,
        max_sessions: int = 1000,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.idle_seconds = idle_seconds
        self.submitted_seconds = submitted_seconds
        self.max_sessions = max_sessions
        self._clock = clock
        self._sessions: Dict[str, WizardSession] = {}

    def _expired(self, session: WizardSession, now: float) -> bool:
        if session.submitting:
            return False
        if session.completed_at is not None and now - session.completed_at >= self.submitted_seconds:
            return True
        return now - session.touched_at >= self.idle_seconds

    def sweep(self) -> int:
        """Drop expired sessions. Returns how many went."""
        now = self._clock()
        stale = [sid for sid, s in self._sessions.items() if self._expired(s, now)]
        for sid in stale:
            del self._sessions[sid]
        if stale:
            logger.info("Expired %d wizard session(s)", len(stale))
        return len(stale)

    def _make_room(self) -> None:
        idle = sorted((s for s in self._sessions.values() if not s.submitting), key=lambda s: s.touched_at)
        while len(self._sessions) >= self.max_sessions and idle:
            evicted = idle.pop(0)
            del self._sessions[evicted.id]
            logger.warning("Wizard limit reached; evicted %s", evicted.id)

    def create(self) -> WizardSession:
        self.sweep()
        self._make_room()
        session = WizardSession(secrets.token_urlsafe(12), clock=self._clock)
        self._sessions[session.id] = session
        logger.debug("Wizard %s opened", session.id)
        return session

    def get(self, session_id: str) -> Optional[WizardSession]:
        session = self._sessions.get(session_id)
        if session is None:
            return None
        if self._expired(session, self._clock()):
            del self._sessions[session_id]
            return None
        session.touch()
        return session

    def discard(self, session_id: str) -> bool:
        return self._sessions.pop(session_id, None) is not None

    def clear(self) -> None:
        self._sessions.clear()

    def __len__(self) -> int:
        return len(self._sessions)
