# Block list management: the admin form posts here, and the dashboard
# lists, inspects and deletes entries.

from typing import Optional

from fastapi import APIRouter, Depends, Form, HTTPException, Query, status
from sqlalchemy.orm import Session

from zerospam.access.submission import BlockSubmissionForm, submit_manual_block
from zerospam.core.config import settings
from zerospam.core.db import get_db
from zerospam.core.errors import StoreWriteError
from zerospam.core.nonce import create_nonce, verify_nonce
from zerospam.crud.blocked import delete_blocked, get_blocked, list_blocked
from zerospam.schemas.blocked import BlockEntryList, BlockEntryRead, BlockErrorRead, NonceRead

router = APIRouter(prefix="/blocked", tags=["blocked"])


@router.get("", response_model=BlockEntryList)
def read_blocked(
    search: Optional[str] = Query(default=None),
    match_type: Optional[str] = Query(default=None, pattern="^(ip|key)$"),
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=50, ge=1, le=500),
    db: Session = Depends(get_db),
):
    items, total = list_blocked(db, search=search, match_type=match_type, page=page, page_size=page_size)
    return {"items": items, "total": total, "page": page, "page_size": page_size}


# GET /blocked/nonce
#
# Issues the token the admin form must echo back in its `zerospam` field.
@router.get("/nonce", response_model=NonceRead)
def read_nonce():
    return {
        "nonce": create_nonce(),
        "action": settings.NONCE_ACTION,
        "expires_in": settings.NONCE_LIFETIME_SECONDS,
    }


@router.get("/{blocked_id}", response_model=BlockEntryRead)
def read_blocked_entry(blocked_id: int, db: Session = Depends(get_db)):
    entry = get_blocked(db, blocked_id)
    if not entry:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Block entry not found")
    return entry


# POST /blocked
#
# Form-encoded so the legacy admin page can submit directly. Validation
# failures are raised as BlockValidationError and rendered by the app's
# exception handler with their stable code.
@router.post(
    "",
    response_model=BlockEntryRead,
    status_code=status.HTTP_201_CREATED,
    responses={400: {"model": BlockErrorRead}, 500: {"model": BlockErrorRead}},
)
def create_blocked(
    blocked_ip: Optional[str] = Form(default=None),
    key_type: Optional[str] = Form(default=None),
    blocked_key: Optional[str] = Form(default=None),
    blocked_type: Optional[str] = Form(default=None),
    blocked_reason: Optional[str] = Form(default=None),
    blocked_start_date: Optional[str] = Form(default=None),
    blocked_end_date: Optional[str] = Form(default=None),
    zerospam: Optional[str] = Form(default=None),
    db: Session = Depends(get_db),
):
    form = BlockSubmissionForm(
        blocked_ip=blocked_ip,
        key_type=key_type,
        blocked_key=blocked_key,
        blocked_type=blocked_type,
        blocked_reason=blocked_reason,
        blocked_start_date=blocked_start_date,
        blocked_end_date=blocked_end_date,
    )
    return submit_manual_block(db, form, nonce_valid=verify_nonce(zerospam))


@router.delete("/{blocked_id}", status_code=status.HTTP_204_NO_CONTENT)
def remove_blocked(blocked_id: int, db: Session = Depends(get_db)):
    try:
        deleted = delete_blocked(db, blocked_id)
    except StoreWriteError:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to delete block entry")
    if not deleted:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Block entry not found")
