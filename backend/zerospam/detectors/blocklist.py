from __future__ import annotations

import logging
from typing import Any, Callable, Mapping

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

import zerospam.core.db as db_module
from zerospam.crud.blocked import find_active_match
from zerospam.crud.settings import is_enabled
from zerospam.detectors.base import Detector, DetectorVerdict, no_opinion, register_detector
from zerospam.models.blocked import BlockEntry


logger = logging.getLogger(__name__)


def entry_verdict(detector_id: str, entry: BlockEntry, **details: Any) -> DetectorVerdict:
    return DetectorVerdict(
        detector=detector_id,
        blocked=True,
        details={
            "blocked_id": entry.id,
            "match": entry.describe(),
            "blocked_type": entry.blocked_type,
            "end_block": entry.end_block.isoformat() if entry.end_block else None,
            **details,
        },
        reason=entry.reason or f"Matched block entry {entry.describe()}",
    )


class StoreBackedDetector(Detector):
    """Base for detectors that read the block store from a worker thread."""

    def __init__(self, session_factory: Callable[[], Session] | None = None) -> None:
        self._session_factory = session_factory

    def _session(self) -> Session:
        factory = self._session_factory or db_module.SessionLocal
        return factory()


@register_detector
class BlockListDetector(StoreBackedDetector):
    id = "blocklist"

    def enabled(self, settings: Mapping[str, Any]) -> bool:
        return is_enabled(settings.get("blocklist", True))

    def evaluate(
        self,
        visitor_ip: str,
        event_metadata: Mapping[str, str],
        settings: Mapping[str, Any],
    ) -> DetectorVerdict:
        try:
            with self._session() as db:
                entry = find_active_match(db, ip=visitor_ip)
                if entry is None:
                    for key_type in settings.get("blocklist_key_types") or []:
                        value = event_metadata.get(key_type)
                        if not value:
                            continue
                        entry = find_active_match(db, key_type=key_type, key_value=value)
                        if entry is not None:
                            break
                if entry is None:
                    return DetectorVerdict(detector=self.id)
                return entry_verdict(self.id, entry)
        except SQLAlchemyError as exc:
            logger.warning(
                "detector.store_unavailable",
                extra={"detector": self.id, "visitor_ip": visitor_ip, "error": str(exc)},
            )
            return no_opinion(self.id, "store_unavailable")
