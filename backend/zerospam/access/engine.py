"""
Access-decision engine.

Runs the enabled detectors for one visitor event, merges their verdicts
with logical OR (an allow-list match vetoes everything) and hands the
result to the event log. Detectors are fanned out on a thread pool so the
slowest upstream API bounds latency instead of the sum of all of them.
"""

from __future__ import annotations

import logging
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from datetime import timedelta
from threading import Event, Lock
from time import monotonic
from typing import Any, Iterable, Mapping, Sequence

import zerospam.core.db as db_module
from zerospam.core.config import settings as app_settings
from zerospam.core.errors import BlockValidationError, StoreWriteError
from zerospam.core.metrics import record_decision, record_verdict
from zerospam.crud.blocked import add_or_update_blocked, get_blocked_by_ip
from zerospam.crud.settings import get_settings_snapshot, is_enabled
from zerospam.detectors import Detector, DetectorVerdict, VisitorEvent, build_detectors, no_opinion
from zerospam.models.enums import BlockKindEnum
from zerospam.access.log_writer import EventLogWriter, get_event_log_writer


logger = logging.getLogger(__name__)

# How often a wait loop re-checks the caller's cancel flag.
CANCEL_POLL_SECONDS = 0.05


@dataclass(frozen=True)
class Decision:
    event: VisitorEvent
    blocked: bool
    verdicts: tuple[DetectorVerdict, ...] = field(default_factory=tuple)
    triggering_detector: str | None = None
    whitelisted: bool = False
    cancelled: bool = False

    @property
    def reasons(self) -> list[str]:
        return [v.reason for v in self.verdicts if v.blocked and v.reason]

    def verdict_for(self, detector_id: str) -> DetectorVerdict | None:
        for verdict in self.verdicts:
            if verdict.detector == detector_id:
                return verdict
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "ip": self.event.ip,
            "timestamp": self.event.timestamp.isoformat(),
            "blocked": self.blocked,
            "triggering_detector": self.triggering_detector,
            "whitelisted": self.whitelisted,
            "cancelled": self.cancelled,
            "reasons": self.reasons,
            "verdicts": [v.to_dict() for v in self.verdicts],
        }


def combine_verdicts(
    event: VisitorEvent,
    verdicts: Iterable[DetectorVerdict],
    *,
    cancelled: bool = False,
) -> Decision:
    """
    OR-merge verdicts given in configured order. The first blocking verdict
    is the trigger; any whitelist verdict forces an allow.
    """
    verdicts = tuple(verdicts)
    if any(v.whitelisted for v in verdicts):
        return Decision(event=event, blocked=False, verdicts=verdicts, whitelisted=True, cancelled=cancelled)
    trigger = next((v for v in verdicts if v.blocked), None)
    return Decision(
        event=event,
        blocked=trigger is not None,
        verdicts=verdicts,
        triggering_detector=trigger.detector if trigger else None,
        cancelled=cancelled,
    )


def run_detector(detector: Detector, event: VisitorEvent, settings: Mapping[str, Any]) -> DetectorVerdict:
    """Evaluate one detector; unexpected exceptions become no-opinion verdicts."""
    start = monotonic()
    try:
        verdict = detector.evaluate(event.ip, event.metadata, settings)
        if not isinstance(verdict, DetectorVerdict):
            raise TypeError(f"{type(detector).__name__}.evaluate returned {type(verdict).__name__}")
    except Exception as exc:
        logger.exception(
            "detector.failed",
            extra={"detector": detector.id, "visitor_ip": event.ip},
        )
        verdict = no_opinion(detector.id, "exception", message=str(exc))
    record_verdict(detector.id, verdict.outcome, monotonic() - start)
    return verdict


_EXECUTOR: ThreadPoolExecutor | None = None
_EXECUTOR_LOCK = Lock()


def _get_executor() -> ThreadPoolExecutor:
    global _EXECUTOR
    with _EXECUTOR_LOCK:
        if _EXECUTOR is None:
            _EXECUTOR = ThreadPoolExecutor(
                max_workers=app_settings.DETECTOR_MAX_WORKERS,
                thread_name_prefix="zerospam-detector",
            )
        return _EXECUTOR


def _deadline_seconds(detectors: Sequence[Detector], settings: Mapping[str, Any]) -> float:
    timeouts = []
    for detector in detectors:
        value = detector.timeout(settings)
        timeouts.append(app_settings.DETECTOR_DEFAULT_TIMEOUT_SECONDS if value is None else value)
    longest = max(timeouts) if timeouts else app_settings.DETECTOR_DEFAULT_TIMEOUT_SECONDS
    return max(app_settings.DETECTOR_TIMEOUT_FLOOR_SECONDS, longest) + app_settings.DETECTOR_GRACE_SECONDS


def _fan_out(
    event: VisitorEvent,
    detectors: Sequence[Detector],
    settings: Mapping[str, Any],
    *,
    executor: ThreadPoolExecutor,
    cancel_event: Event | None,
    stop_on_block: bool,
    deadline_seconds: float | None = None,
) -> tuple[list[DetectorVerdict], bool]:
    if not detectors:
        return [], False
    futures: dict[Future, int] = {
        executor.submit(run_detector, detector, event, settings): index
        for index, detector in enumerate(detectors)
    }
    deadline = monotonic() + (deadline_seconds or _deadline_seconds(detectors, settings))
    results: dict[int, DetectorVerdict] = {}
    pending = set(futures)
    cancelled = False
    short_circuited = False

    while pending:
        if cancel_event is not None and cancel_event.is_set():
            cancelled = True
            break
        remaining = deadline - monotonic()
        if remaining <= 0:
            break
        if cancel_event is not None:
            remaining = min(remaining, CANCEL_POLL_SECONDS)
        done, pending = wait(pending, timeout=remaining, return_when=FIRST_COMPLETED)
        for future in done:
            results[futures[future]] = future.result()
        if stop_on_block and any(v.blocked for v in results.values()):
            short_circuited = True
            break

    for future in pending:
        future.cancel()
        if cancelled or short_circuited:
            continue
        detector = detectors[futures[future]]
        logger.warning(
            "detector.timeout",
            extra={"detector": detector.id, "visitor_ip": event.ip},
        )
        record_verdict(detector.id, "no_opinion")
        results[futures[future]] = no_opinion(detector.id, "timeout")

    return [results[index] for index in sorted(results)], cancelled


def load_settings_snapshot() -> Mapping[str, Any]:
    with db_module.SessionLocal() as db:
        return get_settings_snapshot(db)


def _auto_block(decision: Decision, detectors: Sequence[Detector], settings: Mapping[str, Any]) -> None:
    trigger = next((d for d in detectors if d.id == decision.triggering_detector), None)
    if trigger is None or not trigger.persist_blocks:
        return
    try:
        minutes = max(1, int(settings.get("auto_block_minutes") or 60))
    except (TypeError, ValueError):
        minutes = 60
    now = decision.event.timestamp
    end = now + timedelta(minutes=minutes)
    verdict = decision.verdict_for(trigger.id)
    try:
        with db_module.SessionLocal() as db:
            existing = get_blocked_by_ip(db, decision.event.ip)
            if existing is not None:
                # Admin entries and permanent blocks are never rewritten;
                # automatic entries only ever get longer.
                if (
                    existing.source == "manual"
                    or existing.blocked_type == BlockKindEnum.PERMANENT.value
                    or (existing.end_block is not None and existing.end_block >= end)
                ):
                    logger.info(
                        "decision.auto_block_skipped",
                        extra={"visitor_ip": decision.event.ip, "detector": trigger.id, "blocked_id": existing.id},
                    )
                    return
                if existing.start_block <= now:
                    now = existing.start_block
            add_or_update_blocked(
                db,
                user_ip=decision.event.ip,
                blocked_type=BlockKindEnum.TEMPORARY.value,
                start_block=now,
                end_block=end,
                reason=verdict.reason if verdict else None,
                source=trigger.id,
                now=now,
            )
    except (StoreWriteError, BlockValidationError) as exc:
        logger.warning(
            "decision.auto_block_failed",
            extra={"visitor_ip": decision.event.ip, "detector": trigger.id, "error": str(exc)},
        )


def decide(
    event: VisitorEvent,
    *,
    detectors: Sequence[Detector] | None = None,
    settings: Mapping[str, Any] | None = None,
    log_writer: EventLogWriter | None = None,
    cancel_event: Event | None = None,
    executor: ThreadPoolExecutor | None = None,
) -> Decision:
    """
    Evaluate a visitor event and return the merged decision.

    `settings` is a snapshot taken once per evaluation; when omitted it is
    read from the settings table. `detectors` defaults to the enabled,
    registered detectors in `detector_order`.
    """
    if settings is None:
        settings = load_settings_snapshot()
    if detectors is None:
        detectors = build_detectors(settings)

    verdicts: list[DetectorVerdict] = []
    vetoes = [d for d in detectors if d.veto]
    others = [d for d in detectors if not d.veto]
    for detector in vetoes:
        verdicts.append(run_detector(detector, event, settings))

    cancelled = False
    if not any(v.whitelisted for v in verdicts):
        fanned, cancelled = _fan_out(
            event,
            others,
            settings,
            executor=executor or _get_executor(),
            cancel_event=cancel_event,
            stop_on_block=is_enabled(settings.get("stop_on_block")),
        )
        verdicts.extend(fanned)

    decision = combine_verdicts(event, verdicts, cancelled=cancelled)
    record_decision(decision.blocked, decision.triggering_detector)
    logger.info(
        "decision.made",
        extra={
            "visitor_ip": event.ip,
            "blocked": decision.blocked,
            "detector": decision.triggering_detector,
            "whitelisted": decision.whitelisted,
            "evaluated": [v.detector for v in decision.verdicts],
        },
    )

    if decision.blocked and is_enabled(settings.get("auto_block")):
        _auto_block(decision, detectors, settings)

    writer = log_writer or get_event_log_writer()
    try:
        writer.submit(event, decision)
    except RuntimeError as exc:
        # Executor already shut down during interpreter exit.
        logger.warning("event_log.submit_failed", extra={"visitor_ip": event.ip, "error": str(exc)})
    return decision
