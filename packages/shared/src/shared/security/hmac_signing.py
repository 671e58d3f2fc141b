from __future__ import annotations

from datetime import datetime, timezone
import hashlib
import hmac

SIGNATURE_HEADER = "x-event-signature"
TIMESTAMP_HEADER = "x-event-timestamp"


class SignatureValidationError(ValueError):
    pass


def build_event_signature(secret: str, timestamp: str, payload: str) -> str:
    if not secret:
        raise ValueError("secret required")
    message = f"{timestamp}.{payload}".encode("utf-8")
    return "sha256=" + hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def build_signed_headers(secret: str, payload: str, *, now: datetime | None = None) -> dict[str, str]:
    """Headers for a service-to-service call whose body is ``payload``."""
    timestamp = str(int((now or datetime.now(timezone.utc)).timestamp()))
    return {
        TIMESTAMP_HEADER: timestamp,
        SIGNATURE_HEADER: build_event_signature(secret, timestamp, payload),
        "content-type": "application/json",
    }


def verify_event_signature(
    *,
    secret: str,
    timestamp: str | None,
    payload: str,
    signature: str | None,
    max_skew_seconds: int = 300,
) -> None:
    if not secret:
        raise SignatureValidationError("internal signing secret is not configured")
    if not timestamp or not signature:
        raise SignatureValidationError("missing signature headers")
    try:
        ts = int(timestamp)
    except ValueError as exc:
        raise SignatureValidationError("invalid signature timestamp") from exc
    now = int(datetime.now(timezone.utc).timestamp())
    if abs(now - ts) > max_skew_seconds:
        raise SignatureValidationError("signature timestamp outside allowed window")
    if not hmac.compare_digest(build_event_signature(secret, timestamp, payload), signature):
        raise SignatureValidationError("invalid signature")
