from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from zerospam.core.errors import BlockErrorCode, BlockValidationError, StoreWriteError
from zerospam.core.ip import parse_ip
from zerospam.core.metrics import record_block_store_write
from zerospam.core.time import to_naive_utc, utcnow
from zerospam.models.blocked import BlockEntry
from zerospam.models.enums import BlockKindEnum, BlockMatchEnum


logger = logging.getLogger(__name__)

BLOCK_KINDS = {kind.value for kind in BlockKindEnum}


def _clean(value: str | None) -> str | None:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def validate_block_entry(
    *,
    user_ip: str | None = None,
    key_type: str | None = None,
    blocked_key: str | None = None,
    blocked_type: str | None = None,
    start_block: datetime | None = None,
    end_block: datetime | None = None,
    now: datetime | None = None,
) -> dict:
    """
    Validate and normalize block fields. Raises BlockValidationError with
    the code for the first failed check.
    """
    user_ip = _clean(user_ip)
    key_type = _clean(key_type)
    blocked_key = _clean(blocked_key)
    if blocked_key:
        # Keys match case-insensitively, so they are stored folded.
        blocked_key = blocked_key.lower()

    if key_type and not blocked_key:
        raise BlockValidationError(BlockErrorCode.MISSING_KEY_VALUE)
    if not user_ip and not key_type:
        raise BlockValidationError(BlockErrorCode.MISSING_MATCH)
    if user_ip and key_type:
        raise BlockValidationError(
            BlockErrorCode.MISSING_MATCH,
            "Block either an IP address or a key, not both.",
        )

    normalized_ip = None
    if user_ip:
        normalized_ip = parse_ip(user_ip)
        if normalized_ip is None:
            raise BlockValidationError(BlockErrorCode.INVALID_IP)

    if blocked_type not in BLOCK_KINDS:
        raise BlockValidationError(BlockErrorCode.INVALID_TYPE)

    start = to_naive_utc(start_block) or to_naive_utc(now) or utcnow()
    end = to_naive_utc(end_block)
    if blocked_type == BlockKindEnum.TEMPORARY.value:
        if end is None or end <= start:
            raise BlockValidationError(BlockErrorCode.MISSING_END_DATE)
    else:
        # Permanent blocks ignore any submitted end date.
        end = None

    return {
        "match_type": BlockMatchEnum.IP.value if normalized_ip else BlockMatchEnum.KEY.value,
        "user_ip": normalized_ip,
        "key_type": key_type,
        "blocked_key": blocked_key,
        "blocked_type": blocked_type,
        "start_block": start,
        "end_block": end,
    }


def _find_by_match(db: Session, fields: dict) -> BlockEntry | None:
    query = db.query(BlockEntry)
    if fields["user_ip"]:
        query = query.filter(BlockEntry.user_ip == fields["user_ip"])
    else:
        query = query.filter(
            BlockEntry.key_type == fields["key_type"],
            BlockEntry.blocked_key == fields["blocked_key"],
        )
    return query.first()


def _apply(record: BlockEntry, fields: dict, reason: str | None, source: str) -> None:
    record.match_type = fields["match_type"]
    record.user_ip = fields["user_ip"]
    record.key_type = fields["key_type"]
    record.blocked_key = fields["blocked_key"]
    record.blocked_type = fields["blocked_type"]
    record.start_block = fields["start_block"]
    record.end_block = fields["end_block"]
    record.reason = reason
    record.source = source


def add_or_update_blocked(
    db: Session,
    *,
    user_ip: str | None = None,
    key_type: str | None = None,
    blocked_key: str | None = None,
    blocked_type: str | None = None,
    start_block: datetime | None = None,
    end_block: datetime | None = None,
    reason: str | None = None,
    source: str = "manual",
    now: datetime | None = None,
) -> BlockEntry:
    """
    Insert a block entry, or update the one with the same match fields.
    """
    fields = validate_block_entry(
        user_ip=user_ip,
        key_type=key_type,
        blocked_key=blocked_key,
        blocked_type=blocked_type,
        start_block=start_block,
        end_block=end_block,
        now=now,
    )
    reason = _clean(reason)
    try:
        record = _find_by_match(db, fields)
        if record is None:
            record = BlockEntry()
            db.add(record)
        _apply(record, fields, reason, source)
        try:
            db.commit()
        except IntegrityError:
            # Another writer inserted the same match first; update theirs.
            db.rollback()
            record = _find_by_match(db, fields)
            if record is None:
                raise
            _apply(record, fields, reason, source)
            db.commit()
        db.refresh(record)
    except SQLAlchemyError as exc:
        db.rollback()
        record_block_store_write(source, success=False)
        logger.warning(
            "blocked.write_failed",
            extra={"match": fields["user_ip"] or f"{fields['key_type']}={fields['blocked_key']}", "error": str(exc)},
        )
        raise StoreWriteError("Failed to save block entry") from exc
    record_block_store_write(source, success=True)
    logger.info(
        "blocked.saved",
        extra={"blocked_id": record.id, "match": record.describe(), "blocked_type": record.blocked_type, "source": source},
    )
    return record


def find_active_match(
    db: Session,
    *,
    ip: str | None = None,
    key_type: str | None = None,
    key_value: str | None = None,
    now: datetime | None = None,
) -> BlockEntry | None:
    now = to_naive_utc(now) or utcnow()
    query = db.query(BlockEntry)
    if ip:
        normalized = parse_ip(ip)
        if normalized is None:
            return None
        query = query.filter(BlockEntry.user_ip == normalized)
    elif key_type and key_value:
        query = query.filter(
            BlockEntry.key_type == key_type,
            func.lower(BlockEntry.blocked_key) == str(key_value).strip().lower(),
        )
    else:
        return None
    return (
        query.filter(
            BlockEntry.start_block <= now,
            or_(
                BlockEntry.blocked_type == BlockKindEnum.PERMANENT.value,
                BlockEntry.end_block >= now,
            ),
        )
        .order_by(BlockEntry.id.desc())
        .first()
    )


def get_blocked_by_ip(db: Session, ip: str) -> BlockEntry | None:
    normalized = parse_ip(ip)
    if normalized is None:
        return None
    return db.query(BlockEntry).filter(BlockEntry.user_ip == normalized).first()


def get_blocked(db: Session, blocked_id: int) -> BlockEntry | None:
    return db.query(BlockEntry).filter(BlockEntry.id == blocked_id).first()


def list_blocked(
    db: Session,
    *,
    search: str | None = None,
    match_type: str | None = None,
    page: int = 1,
    page_size: int = 50,
) -> tuple[list[BlockEntry], int]:
    query = db.query(BlockEntry)
    if match_type:
        query = query.filter(BlockEntry.match_type == match_type)
    if search:
        pattern = f"%{search.strip().lower()}%"
        query = query.filter(
            or_(func.lower(BlockEntry.user_ip).like(pattern), BlockEntry.blocked_key.like(pattern))
        )
    total = query.count()
    page = max(1, page)
    page_size = max(1, page_size)
    items = (
        query.order_by(BlockEntry.created_at.desc(), BlockEntry.id.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
        .all()
    )
    return items, total


def delete_blocked(db: Session, blocked_id: int) -> bool:
    record = get_blocked(db, blocked_id)
    if not record:
        return False
    db.delete(record)
    try:
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise StoreWriteError("Failed to delete block entry") from exc
    logger.info("blocked.deleted", extra={"blocked_id": blocked_id})
    return True
