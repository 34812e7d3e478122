from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from zerospam.core.db import get_db
from zerospam.core.errors import StoreWriteError
from zerospam.crud.settings import get_settings_snapshot, public_settings, update_settings
from zerospam.detectors import registered_detector_ids
from zerospam.schemas.settings import DetectorSettingsUpdate

router = APIRouter(prefix="/settings", tags=["settings"])


@router.get("")
def read_settings(db: Session = Depends(get_db)):
    return public_settings(get_settings_snapshot(db))


@router.put("")
def put_settings(payload: DetectorSettingsUpdate, db: Session = Depends(get_db)):
    changes = payload.model_dump(exclude_unset=True)
    unknown = [d for d in changes.get("detector_order") or [] if d not in registered_detector_ids()]
    if unknown:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Unknown detectors: {', '.join(unknown)}",
        )
    try:
        snapshot = update_settings(db, changes)
    except StoreWriteError:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to save settings")
    return public_settings(snapshot)
