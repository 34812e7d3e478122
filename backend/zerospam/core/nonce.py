import hashlib
import hmac
import math
import time

from zerospam.core.config import settings


def _tick(now: float | None = None) -> int:
    half_life = settings.NONCE_LIFETIME_SECONDS / 2
    current = time.time() if now is None else now
    return int(math.ceil(current / half_life))


def _digest(action: str, tick: int) -> str:
    message = f"{tick}|{action}".encode("utf-8")
    digest = hmac.new(settings.SECRET_KEY.encode("utf-8"), message, hashlib.sha256)
    return digest.hexdigest()[:20]


def create_nonce(action: str | None = None, *, now: float | None = None) -> str:
    return _digest(action or settings.NONCE_ACTION, _tick(now))


def verify_nonce(nonce: str | None, action: str | None = None, *, now: float | None = None) -> bool:
    # Valid for the current tick and the one before it.
    if not nonce:
        return False
    action = action or settings.NONCE_ACTION
    tick = _tick(now)
    for candidate in (tick, tick - 1):
        if hmac.compare_digest(_digest(action, candidate), nonce):
            return True
    return False
