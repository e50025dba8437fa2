"""Profile writes: editable fields and the avatar."""

from __future__ import annotations

import logging
from typing import Optional

from auth import CurrentUser, new_profile
from context import AppContext
from schemas import ProfileUpdate
from storage import AVATARS

logger = logging.getLogger(__name__)


def update_profile(ctx: AppContext, user: CurrentUser, changes: ProfileUpdate) -> None:
    """Upsert the editable profile fields for `user`."""
    values = changes.model_dump(exclude_unset=True)
    values["email"] = user.email
    defaults = new_profile(user.id, user.email).model_dump(exclude={"id", "created_at"})
    ctx.store.upsert_document("users", {"_id": user.id}, values, defaults=defaults)
    logger.info("Profile %s updated: %s", user.id, sorted(values))


def set_avatar(ctx: AppContext, user: CurrentUser, data: bytes, filename: str, content_type: Optional[str]) -> str:
    """Store the avatar (replacing any previous one) and point the profile at it."""
    ext = filename.rsplit(".", 1)[-1]
    key = f"{user.id}/avatar.{ext}"
    ctx.storage.upload(AVATARS, key, data, content_type, upsert=True)
    url = ctx.storage.public_url(AVATARS, key)

    if ctx.store.update_document("users", {"_id": user.id}, {"avatar_url": url}) == 0:
        profile = new_profile(user.id, user.email, avatar_url=url)
        ctx.store.create_document("users", profile.model_dump(exclude={"created_at"}))
    return url
