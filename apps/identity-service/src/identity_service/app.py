from __future__ import annotations

from contextlib import asynccontextmanager
import json
import logging
import os
import time
from typing import Any
from uuid import uuid4

from devkit.config import load_settings
from devkit.observability import configure_otel, configure_probe_access_log_filter
from devkit.redis import create_redis_client, create_revoked_session_store
from fastapi import Depends, FastAPI, Header, HTTPException, Request, status
from fastapi.responses import JSONResponse

from identity_service.profile_trigger import ProfileTriggerClient
from identity_service.rate_limit import SlidingWindowLimiter
from identity_service.schemas import RefreshRequest, SignupRequest, TokenRequest
from identity_service.store import IdentityAlreadyExistsError, IdentityRecord, IdentityStore
from shared.security import (
    ACCESS_TOKEN_TYPE,
    REFRESH_TOKEN_TYPE,
    JWTManager,
    SessionTokenPayload,
    SignatureValidationError,
    verify_event_signature,
)

logger = logging.getLogger(__name__)

_DEFAULT_SEED_USERS = [
    {"email": "driver@example.com", "password": "password123", "user_metadata": {"name": "Demo Driver"}},
]


def success_response(data: Any, meta: dict[str, Any] | None = None) -> dict[str, Any]:
    return {"success": True, "data": data, "meta": meta or {}}


def error_response(code: str, message: str) -> dict[str, Any]:
    return {"success": False, "error": {"code": code, "message": message}}


def _unauthorized(code: str, message: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail={"code": code, "message": message})


def _load_seed_users() -> list[dict[str, Any]]:
    raw = os.getenv("IDENTITY_SEED_USERS_JSON")
    if raw is None:
        return list(_DEFAULT_SEED_USERS)
    try:
        parsed = json.loads(raw)
        return [
            {
                "email": str(item["email"]),
                "password": str(item["password"]),
                "user_metadata": dict(item.get("user_metadata") or {}),
            }
            for item in parsed
        ]
    except (ValueError, KeyError, TypeError):
        logger.warning("identity_seed_users_invalid", extra={"env": "IDENTITY_SEED_USERS_JSON"})
        return list(_DEFAULT_SEED_USERS)


def _issue_session(jwt: JWTManager, identity: IdentityRecord, *, session_id: str | None = None) -> dict[str, Any]:
    sid = session_id or str(uuid4())
    return {
        "access_token": jwt.issue_access_token(identity.id, identity.email, sid),
        "refresh_token": jwt.issue_refresh_token(identity.id, identity.email, sid),
        "token_type": "bearer",
        "expires_in_seconds": jwt.access_ttl_seconds,
        "user": identity.to_public(),
    }


def create_app() -> FastAPI:
    settings = load_settings("identity-service")
    configure_otel(settings.SERVICE_NAME)
    jwt = JWTManager(secret=settings.JWT_SECRET_KEY)
    redis_client = create_redis_client(settings.REDIS_URL)
    revoked_store = create_revoked_session_store(redis_client)
    login_limiter = SlidingWindowLimiter(limit=5, window_seconds=300)
    identity_store = IdentityStore(database_url=settings.DATABASE_URL, seed_users=_load_seed_users())
    profile_trigger = ProfileTriggerClient(
        base_url=settings.PROFILE_SERVICE_BASE_URL,
        hmac_secret=settings.INTERNAL_EVENT_HMAC_SECRET,
    )

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        await identity_store.ensure_ready()
        try:
            yield
        finally:
            await identity_store.close()
            if redis_client is not None:
                await redis_client.close()

    app = FastAPI(title="Identity Service", version="0.1.0", lifespan=lifespan)
    app.state.identity_store = identity_store
    app.state.profile_trigger = profile_trigger
    configure_probe_access_log_filter()

    async def decode_session_token(token: str, *, expected_type: str | None) -> SessionTokenPayload:
        try:
            payload = jwt.decode(token, expected_type=expected_type)
        except ValueError as exc:
            raise _unauthorized("INVALID_TOKEN", str(exc)) from exc
        if await revoked_store.is_revoked(payload.sid):
            raise _unauthorized("TOKEN_REVOKED", "session has been signed out")
        return payload

    async def resolve_bearer(authorization: str | None = Header(default=None)) -> SessionTokenPayload:
        if not authorization or not authorization.lower().startswith("bearer "):
            raise _unauthorized("UNAUTHORIZED", "missing bearer token")
        return await decode_session_token(authorization.split(" ", 1)[1], expected_type=ACCESS_TOKEN_TYPE)

    @app.exception_handler(HTTPException)
    async def handle_http_exception(_: Request, exc: HTTPException) -> JSONResponse:
        if isinstance(exc.detail, dict):
            payload = {"success": False, "error": exc.detail}
        else:
            payload = error_response("HTTP_ERROR", str(exc.detail))
        return JSONResponse(status_code=exc.status_code, content=payload, headers=exc.headers)

    @app.get("/healthz")
    async def healthz() -> dict:
        return success_response({"status": "ok"}, meta={})

    @app.get("/readyz")
    async def readyz() -> dict:
        return success_response({"status": "ready"}, meta={})

    @app.post("/v1/auth/signup")
    async def signup(body: SignupRequest) -> dict:
        try:
            identity = await identity_store.sign_up(
                email=body.email,
                password=body.password,
                metadata=body.user_metadata,
            )
        except IdentityAlreadyExistsError as exc:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail={"code": "USER_ALREADY_EXISTS", "message": str(exc)},
            ) from exc
        logger.info("identity_signed_up", extra={"identity_id": identity.id})
        trigger_delivered = await profile_trigger.notify_identity_created(identity)
        return success_response(_issue_session(jwt, identity), meta={"profile_trigger_delivered": trigger_delivered})

    @app.post("/v1/auth/token")
    async def sign_in(body: TokenRequest, request: Request) -> dict:
        client_ip = request.client.host if request.client else "anonymous"
        now = time.time()
        if not login_limiter.allow(client_ip, now_seconds=now):
            retry_after = login_limiter.retry_after_seconds(client_ip, now_seconds=now)
            logger.warning("identity_login_rate_limited", extra={"client_ip": client_ip})
            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail={"code": "RATE_LIMIT_EXCEEDED", "message": "Too many requests"},
                headers={"Retry-After": str(retry_after)},
            )
        identity = await identity_store.authenticate(email=body.email, password=body.password)
        if identity is None:
            raise _unauthorized("INVALID_CREDENTIALS", "Invalid login credentials")
        return success_response(_issue_session(jwt, identity), meta={})

    @app.post("/v1/auth/refresh")
    async def refresh(body: RefreshRequest) -> dict:
        payload = await decode_session_token(body.refresh_token, expected_type=REFRESH_TOKEN_TYPE)
        identity = await identity_store.get_by_id(payload.sub)
        if identity is None:
            raise _unauthorized("INVALID_TOKEN", "identity no longer exists")
        session = _issue_session(jwt, identity, session_id=payload.sid)
        # the refresh token keeps its original expiry
        session["refresh_token"] = body.refresh_token
        return success_response(session, meta={})

    @app.post("/v1/auth/logout")
    async def logout(auth: SessionTokenPayload = Depends(resolve_bearer)) -> dict:
        await revoked_store.revoke(auth.sid, ttl_seconds=jwt.refresh_ttl_seconds)
        logger.info("identity_signed_out", extra={"identity_id": auth.sub})
        return success_response({"revoked": True}, meta={})

    @app.get("/v1/auth/user")
    async def current_user(auth: SessionTokenPayload = Depends(resolve_bearer)) -> dict:
        identity = await identity_store.get_by_id(auth.sub)
        if identity is None:
            raise _unauthorized("UNAUTHORIZED", "identity not found")
        return success_response(identity.to_public(), meta={})

    @app.post("/internal/identities/profile-backfill")
    async def profile_backfill(
        request: Request,
        x_event_signature: str | None = Header(default=None),
        x_event_timestamp: str | None = Header(default=None),
    ) -> dict:
        payload_text = (await request.body()).decode("utf-8")
        try:
            verify_event_signature(
                secret=settings.INTERNAL_EVENT_HMAC_SECRET,
                timestamp=x_event_timestamp,
                payload=payload_text,
                signature=x_event_signature,
            )
        except SignatureValidationError as exc:
            raise _unauthorized("UNAUTHORIZED", str(exc)) from exc
        identities = await identity_store.list_identities()
        created = await profile_trigger.request_backfill(identities)
        if created is None:
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail={"code": "PROFILE_SERVICE_UNAVAILABLE", "message": "profile backfill could not be delivered"},
            )
        return success_response({"requested": len(identities), "created": created}, meta={})

    return app


app = create_app()
