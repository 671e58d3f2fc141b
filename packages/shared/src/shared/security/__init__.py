from shared.security.hmac_signing import (
    SIGNATURE_HEADER,
    TIMESTAMP_HEADER,
    SignatureValidationError,
    build_event_signature,
    build_signed_headers,
    verify_event_signature,
)
from shared.security.jwt_utils import (
    ACCESS_TOKEN_TYPE,
    REFRESH_TOKEN_TYPE,
    JWTManager,
    SessionTokenPayload,
)
from shared.security.rbac import Role, coerce_role, parse_role
from shared.security.revocation import (
    InMemoryRevokedSessionStore,
    RedisRevokedSessionStore,
    RevokedSessionStore,
)

__all__ = [
    "ACCESS_TOKEN_TYPE",
    "InMemoryRevokedSessionStore",
    "JWTManager",
    "REFRESH_TOKEN_TYPE",
    "RedisRevokedSessionStore",
    "RevokedSessionStore",
    "Role",
    "SIGNATURE_HEADER",
    "SessionTokenPayload",
    "SignatureValidationError",
    "TIMESTAMP_HEADER",
    "build_event_signature",
    "build_signed_headers",
    "coerce_role",
    "parse_role",
    "verify_event_signature",
]
