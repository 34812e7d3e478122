from __future__ import annotations

from typing import Any, Mapping

from zerospam.core.ip import ip_in_networks
from zerospam.detectors.base import Detector, DetectorVerdict, register_detector


@register_detector
class WhitelistDetector(Detector):
    """Allow-list check. A match vetoes every other detector."""

    id = "whitelist"
    veto = True

    def enabled(self, settings: Mapping[str, Any]) -> bool:
        return bool(settings.get("ip_whitelist"))

    def evaluate(
        self,
        visitor_ip: str,
        event_metadata: Mapping[str, str],
        settings: Mapping[str, Any],
    ) -> DetectorVerdict:
        entries = settings.get("ip_whitelist") or []
        if isinstance(entries, str):
            entries = [part.strip() for part in entries.replace("\n", ",").split(",")]
        if ip_in_networks(visitor_ip, entries):
            return DetectorVerdict(
                detector=self.id,
                blocked=False,
                whitelisted=True,
                reason="IP address is whitelisted",
            )
        return DetectorVerdict(detector=self.id)
