"""Process-wide application context.

Built once at startup and closed at shutdown. Route handlers receive it
through the `get_context` dependency rather than importing module globals.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from fastapi import Request

from config import Settings
from database import RecordStore, connect
from storage import ObjectStorage
from wizard import WizardRegistry

logger = logging.getLogger(__name__)


@dataclass
class AppContext:
    settings: Settings
    store: RecordStore
    storage: ObjectStorage
    wizards: WizardRegistry = field(default_factory=WizardRegistry)

    def close(self) -> None:
        self.wizards.clear()
        self.store.close()
        logger.info("Application context closed")


def init_context(settings: Settings) -> AppContext:
    store = connect(settings.database_url, settings.database_name)
    storage = ObjectStorage(settings.storage_root, settings.public_base_url)
    logger.info("Object storage rooted at %s", storage.root)
    wizards = WizardRegistry(
        idle_seconds=settings.wizard_idle_seconds,
        submitted_seconds=settings.wizard_submitted_seconds,
        max_sessions=settings.wizard_max_sessions,
    )
    return AppContext(settings=settings, store=store, storage=storage, wizards=wizards)


def get_context(request: Request) -> AppContext:
    return request.app.state.ctx
