from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.orm import Session

from zerospam.core.errors import BlockErrorCode, BlockValidationError, StoreWriteError
from zerospam.core.time import parse_datetime, utcnow
from zerospam.crud.blocked import add_or_update_blocked, validate_block_entry
from zerospam.models.blocked import BlockEntry


@dataclass
class BlockSubmissionForm:
    """Raw admin form fields, as posted."""

    blocked_ip: str | None = None
    key_type: str | None = None
    blocked_key: str | None = None
    blocked_type: str | None = None
    blocked_reason: str | None = None
    blocked_start_date: str | None = None
    blocked_end_date: str | None = None


def _parse_form_date(value: str | None) -> tuple[datetime | None, bool]:
    try:
        return parse_datetime(value), True
    except ValueError:
        return None, False


def submit_manual_block(
    db: Session,
    form: BlockSubmissionForm,
    *,
    nonce_valid: bool,
    now: datetime | None = None,
) -> BlockEntry:
    """
    Validate and store an admin block submission. Checks run in a fixed
    order and the first failure raises BlockValidationError with its code.
    An unreadable date counts as a missing one.
    """
    if not nonce_valid:
        raise BlockValidationError(BlockErrorCode.INVALID_NONCE)

    now = now or utcnow()
    start, start_ok = _parse_form_date(form.blocked_start_date)
    end, end_ok = _parse_form_date(form.blocked_end_date)
    blocked_type = (form.blocked_type or "").strip().lower() or None
    fields = dict(
        user_ip=form.blocked_ip,
        key_type=form.key_type,
        blocked_key=form.blocked_key,
        blocked_type=blocked_type,
        start_block=start,
        end_block=end,
        now=now,
    )
    validate_block_entry(**fields)
    if not start_ok or (blocked_type == "temporary" and not end_ok):
        raise BlockValidationError(
            BlockErrorCode.MISSING_END_DATE,
            "Dates must look like YYYY-MM-DD HH:MM.",
        )

    try:
        return add_or_update_blocked(db, reason=form.blocked_reason, source="manual", **fields)
    except StoreWriteError as exc:
        raise BlockValidationError(BlockErrorCode.STORE_WRITE_FAILED, status_code=500) from exc
