from typing import Optional

from pydantic import BaseModel, Field


class DetectorSettingsUpdate(BaseModel):
    detector_order: Optional[list[str]] = None
    stop_on_block: Optional[bool] = None
    auto_block: Optional[bool] = None
    auto_block_minutes: Optional[int] = Field(default=None, ge=1)
    ip_whitelist: Optional[list[str]] = None

    blocklist: Optional[bool] = None
    blocklist_key_types: Optional[list[str]] = None

    stop_forum_spam: Optional[bool] = None
    stop_forum_spam_timeout: Optional[float] = Field(default=None, ge=0)
    stop_forum_spam_confidence_min: Optional[float] = Field(default=None, ge=0, le=100)
    stop_forum_spam_cache_ttl: Optional[int] = Field(default=None, ge=1)

    geo_blocking: Optional[bool] = None
    geo_provider: Optional[str] = None
    ipstack_api: Optional[str] = None
    ipinfo_access_token: Optional[str] = None
    geo_timeout: Optional[float] = Field(default=None, ge=0)
    geo_cache_ttl: Optional[int] = Field(default=None, ge=1)
