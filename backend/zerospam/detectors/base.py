from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from types import MappingProxyType
from typing import Any, Callable, Iterable, Mapping

from zerospam.core.ip import parse_ip
from zerospam.core.time import to_naive_utc, utcnow


@dataclass(frozen=True)
class VisitorEvent:
    ip: str
    timestamp: datetime = field(default_factory=utcnow)
    metadata: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        normalized = parse_ip(self.ip)
        if normalized is None:
            raise ValueError(f"Invalid visitor IP: {self.ip!r}")
        object.__setattr__(self, "ip", normalized)
        object.__setattr__(self, "timestamp", to_naive_utc(self.timestamp))
        object.__setattr__(
            self,
            "metadata",
            MappingProxyType({str(k): str(v) for k, v in dict(self.metadata).items()}),
        )


@dataclass(frozen=True)
class DetectorVerdict:
    detector: str
    blocked: bool = False
    details: Mapping[str, Any] = field(default_factory=dict)
    reason: str | None = None
    whitelisted: bool = False

    @property
    def no_opinion(self) -> bool:
        return "error" in self.details

    @property
    def outcome(self) -> str:
        if self.whitelisted:
            return "whitelisted"
        if self.blocked:
            return "blocked"
        if self.no_opinion:
            return "no_opinion"
        return "allowed"

    def to_dict(self) -> dict[str, Any]:
        return {
            "detector": self.detector,
            "blocked": self.blocked,
            "whitelisted": self.whitelisted,
            "reason": self.reason,
            "details": dict(self.details),
        }


def no_opinion(detector: str, error: str, **details: Any) -> DetectorVerdict:
    """A not-blocked verdict issued because the detector could not evaluate."""
    return DetectorVerdict(detector=detector, blocked=False, details={"error": error, **details})


class Detector(ABC):
    """
    One spam signal. `evaluate` must not raise for expected failures
    (timeouts, bad upstream payloads, missing credentials); it returns a
    no-opinion verdict instead.
    """

    id: str = ""
    # Detectors whose evidence comes from outside the block store; their
    # blocks may be persisted as automatic block entries.
    persist_blocks: bool = False
    # Veto detectors run before the fan-out and can force an allow.
    veto: bool = False

    def enabled(self, settings: Mapping[str, Any]) -> bool:
        return True

    def timeout(self, settings: Mapping[str, Any]) -> float | None:
        """Upper bound on a single evaluation, used by the aggregator deadline."""
        return None

    @abstractmethod
    def evaluate(
        self,
        visitor_ip: str,
        event_metadata: Mapping[str, str],
        settings: Mapping[str, Any],
    ) -> DetectorVerdict:
        ...


_REGISTRY: dict[str, Callable[[], Detector]] = {}


def register_detector(factory: Callable[[], Detector]) -> Callable[[], Detector]:
    """Class decorator; detector ids must be unique."""
    detector_id = getattr(factory, "id", None)
    if not detector_id:
        raise ValueError("Detectors must define an id")
    if detector_id in _REGISTRY and _REGISTRY[detector_id] is not factory:
        raise ValueError(f"Detector already registered: {detector_id}")
    _REGISTRY[detector_id] = factory
    return factory


def registered_detector_ids() -> list[str]:
    return list(_REGISTRY)


def build_detectors(
    settings: Mapping[str, Any],
    *,
    only_enabled: bool = True,
) -> list[Detector]:
    """
    Instantiate registered detectors in the configured order. Ids missing
    from `detector_order` run after the listed ones, in registration order.
    """
    order: Iterable[str] = settings.get("detector_order") or []
    ordered_ids = [d for d in order if d in _REGISTRY]
    ordered_ids += [d for d in _REGISTRY if d not in ordered_ids]
    detectors = [_REGISTRY[d]() for d in ordered_ids]
    if only_enabled:
        detectors = [d for d in detectors if d.enabled(settings)]
    return detectors
