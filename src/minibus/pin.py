"""Time-bucketed one-time PINs.

A PIN is never stored: it is recomputed from the phone number, the current
time bucket and the signing secret, both when it is sent and when it is
checked. A PIN stays valid for the bucket it was issued in and the next one.
"""

from __future__ import annotations

import hashlib
import hmac
import re
import time

from aws_lambda_powertools import Logger

from . import store
from .config import PIN_MAX_ATTEMPTS, PIN_WINDOW_SECONDS

logger = Logger()

PIN_LENGTH = 4

_PIN_FORMAT = re.compile(rf"^[0-9]{{{PIN_LENGTH}}}$")


def current_bucket(now: float | None = None, window_seconds: int = PIN_WINDOW_SECONDS) -> int:
    ts = time.time() if now is None else now
    return int(ts // window_seconds)


def _fold(ch: str) -> str:
    return ch if ch.isdigit() else str(ord(ch) % 10)


def derive_pin(phone: str, bucket: int, secret: str) -> str:
    digest = hmac.new(secret.encode(), f"{phone}-{bucket}".encode(), hashlib.sha256).hexdigest()
    return "".join(_fold(ch) for ch in digest)[:PIN_LENGTH]


def pin_matches(phone: str, submitted: str, secret: str, now: float | None = None) -> bool:
    if not _PIN_FORMAT.match(submitted or ""):
        return False
    bucket = current_bucket(now)
    return any(
        hmac.compare_digest(derive_pin(phone, candidate, secret), submitted)
        for candidate in (bucket, bucket - 1)
    )


# Failed-attempt throttling

def _attempts_key(phone: str, bucket: int) -> str:
    return f"pin_attempts#{phone}#{bucket}"


def attempts_exhausted(phone: str, now: float | None = None) -> bool:
    if PIN_MAX_ATTEMPTS <= 0:
        return False
    doc = store.get_document(_attempts_key(phone, current_bucket(now)))
    return doc is not None and int(doc.get("attempts", 0)) >= PIN_MAX_ATTEMPTS


def record_failed_attempt(phone: str, now: float | None = None) -> int:
    ts = time.time() if now is None else now
    bucket = current_bucket(ts)
    # Keep the counter around for the whole window a PIN can be valid in
    expires_at = (bucket + 2) * PIN_WINDOW_SECONDS
    attempts = store.increment_counter(_attempts_key(phone, bucket), "attempts", expires_at)
    if PIN_MAX_ATTEMPTS > 0 and attempts >= PIN_MAX_ATTEMPTS:
        logger.warning("PIN attempts exhausted for current window", extra={"attempts": attempts})
    return attempts
