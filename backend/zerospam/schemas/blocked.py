from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class BlockEntryRead(BaseModel):
    id: int
    match_type: str
    user_ip: Optional[str] = None
    key_type: Optional[str] = None
    blocked_key: Optional[str] = None
    blocked_type: str
    start_block: datetime
    end_block: Optional[datetime] = None
    reason: Optional[str] = None
    source: str
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class BlockEntryList(BaseModel):
    items: list[BlockEntryRead]
    total: int
    page: int
    page_size: int


class NonceRead(BaseModel):
    nonce: str
    action: str
    expires_in: int


class BlockErrorRead(BaseModel):
    code: int
    error: str
    message: str
