from __future__ import annotations

import base64
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
import hashlib
import hmac
import json
from typing import Any

ACCESS_TOKEN_TYPE = "access"
REFRESH_TOKEN_TYPE = "refresh"


def _b64url_encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def _b64url_decode(raw: str) -> bytes:
    padding = "=" * (-len(raw) % 4)
    return base64.urlsafe_b64decode((raw + padding).encode("ascii"))


@dataclass(frozen=True)
class SessionTokenPayload:
    """Claims carried by identity session tokens.

    ``sid`` identifies the sign-in session; access and refresh tokens issued
    together share it so a sign-out revokes both.
    """

    sub: str
    email: str
    exp: int
    iat: int
    typ: str
    sid: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "sub": self.sub,
            "email": self.email,
            "exp": self.exp,
            "iat": self.iat,
            "typ": self.typ,
            "sid": self.sid,
        }

    def seconds_remaining(self, now: datetime | None = None) -> int:
        current = int((now or datetime.now(timezone.utc)).timestamp())
        return max(self.exp - current, 0)


class JWTManager:
    """HS256-only JWT utility without external dependency."""

    def __init__(self, secret: str, access_minutes: int = 60, refresh_days: int = 7) -> None:
        if not secret:
            raise ValueError("JWT secret cannot be empty")
        self._secret = secret.encode("utf-8")
        self._access_ttl = timedelta(minutes=access_minutes)
        self._refresh_ttl = timedelta(days=refresh_days)

    @property
    def access_ttl_seconds(self) -> int:
        return int(self._access_ttl.total_seconds())

    @property
    def refresh_ttl_seconds(self) -> int:
        return int(self._refresh_ttl.total_seconds())

    def issue_access_token(self, subject: str, email: str, session_id: str) -> str:
        return self._issue(subject, email, session_id, ACCESS_TOKEN_TYPE, self._access_ttl)

    def issue_refresh_token(self, subject: str, email: str, session_id: str) -> str:
        return self._issue(subject, email, session_id, REFRESH_TOKEN_TYPE, self._refresh_ttl)

    def decode(self, token: str, *, expected_type: str | None = None) -> SessionTokenPayload:
        try:
            header_raw, payload_raw, sig_raw = token.split(".")
        except ValueError as exc:
            raise ValueError("malformed token") from exc
        if not hmac.compare_digest(self._sign(f"{header_raw}.{payload_raw}"), sig_raw):
            raise ValueError("invalid token signature")
        try:
            claims = json.loads(_b64url_decode(payload_raw))
        except (ValueError, UnicodeDecodeError) as exc:
            raise ValueError("malformed token payload") from exc
        exp = int(claims.get("exp", 0))
        if exp <= int(datetime.now(timezone.utc).timestamp()):
            raise ValueError("token expired")
        payload = SessionTokenPayload(
            sub=str(claims.get("sub", "")),
            email=str(claims.get("email", "")),
            exp=exp,
            iat=int(claims.get("iat", 0)),
            typ=str(claims.get("typ", "")),
            sid=str(claims.get("sid", "")),
        )
        if not payload.sub:
            raise ValueError("token subject missing")
        if expected_type is not None and payload.typ != expected_type:
            raise ValueError(f"{expected_type} token required")
        return payload

    def _issue(self, subject: str, email: str, session_id: str, token_type: str, ttl: timedelta) -> str:
        now = datetime.now(timezone.utc)
        payload = SessionTokenPayload(
            sub=subject,
            email=email,
            iat=int(now.timestamp()),
            exp=int((now + ttl).timestamp()),
            typ=token_type,
            sid=session_id,
        )
        header_raw = _b64url_encode(json.dumps({"alg": "HS256", "typ": "JWT"}, separators=(",", ":")).encode("utf-8"))
        payload_raw = _b64url_encode(json.dumps(payload.to_dict(), separators=(",", ":")).encode("utf-8"))
        return f"{header_raw}.{payload_raw}.{self._sign(f'{header_raw}.{payload_raw}')}"

    def _sign(self, signing_input: str) -> str:
        return _b64url_encode(hmac.new(self._secret, signing_input.encode("ascii"), hashlib.sha256).digest())
