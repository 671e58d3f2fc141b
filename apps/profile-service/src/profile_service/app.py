from __future__ import annotations

from contextlib import asynccontextmanager
import logging
from typing import Any

from devkit.config import load_settings
from devkit.observability import configure_otel, configure_probe_access_log_filter
from devkit.redis import create_redis_client, create_revoked_session_store
from fastapi import Depends, FastAPI, Header, HTTPException, Request, status
from fastapi.responses import JSONResponse

from profile_service.models import Caller, ProfileRecord
from profile_service.policy import (
    PolicyViolationError,
    can_read,
    can_update,
    check_insert,
    check_privileged_call,
    check_role_assignment,
)
from profile_service.schemas import (
    BackfillRequest,
    CreateUserProfileRequest,
    IdentityCreatedEvent,
    InternalRoleAssignmentRequest,
    ProfileInsertRequest,
    ProfileNameUpdateRequest,
    RoleAssignmentRequest,
)
from profile_service.store import ProfileAlreadyExistsError, ProfileStore
from shared.naming import resolve_display_name
from shared.security import (
    ACCESS_TOKEN_TYPE,
    JWTManager,
    Role,
    SignatureValidationError,
    parse_role,
    verify_event_signature,
)

logger = logging.getLogger(__name__)


def success_response(data: object, meta: dict[str, object] | None = None) -> dict[str, object]:
    return {"success": True, "data": data, "meta": meta or {}}


def error_response(code: str, message: str) -> dict[str, object]:
    return {"success": False, "error": {"code": code, "message": message}}


def _profile_not_found() -> HTTPException:
    return HTTPException(status_code=404, detail={"code": "PROFILE_NOT_FOUND", "message": "profile not found"})


def _rls_denied(exc: PolicyViolationError) -> HTTPException:
    return HTTPException(status_code=403, detail={"code": "ROW_LEVEL_SECURITY", "message": str(exc)})


def _parse_role_or_422(value: str) -> Role:
    role = parse_role(value)
    if role is None:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"code": "INVALID_ROLE", "message": f"invalid role value: {value!r}"},
        )
    return role


def create_app() -> FastAPI:
    settings = load_settings("profile-service")
    configure_otel(settings.SERVICE_NAME)
    jwt = JWTManager(secret=settings.JWT_SECRET_KEY)
    redis_client = create_redis_client(settings.REDIS_URL)
    revoked_store = create_revoked_session_store(redis_client)
    store = ProfileStore(database_url=settings.DATABASE_URL)

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        await store.ensure_ready()
        try:
            yield
        finally:
            await store.close()
            if redis_client is not None:
                await redis_client.close()

    app = FastAPI(title="Profile Service", version="0.1.0", lifespan=lifespan)
    app.state.profile_store = store
    configure_probe_access_log_filter()

    async def resolve_caller(authorization: str | None = Header(default=None)) -> Caller:
        if not authorization or not authorization.lower().startswith("bearer "):
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail={"code": "UNAUTHORIZED", "message": "missing bearer token"},
            )
        try:
            payload = jwt.decode(authorization.split(" ", 1)[1], expected_type=ACCESS_TOKEN_TYPE)
        except ValueError as exc:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail={"code": "INVALID_TOKEN", "message": str(exc)},
            ) from exc
        if await revoked_store.is_revoked(payload.sid):
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail={"code": "TOKEN_REVOKED", "message": "session has been signed out"},
            )
        own_profile = await store.get(payload.sub)
        return Caller(identity_id=payload.sub, role=own_profile.role if own_profile else Role.USER.value)

    async def verify_internal_call(
        request: Request,
        x_event_signature: str | None = Header(default=None),
        x_event_timestamp: str | None = Header(default=None),
    ) -> None:
        payload_text = (await request.body()).decode("utf-8")
        try:
            verify_event_signature(
                secret=settings.INTERNAL_EVENT_HMAC_SECRET,
                timestamp=x_event_timestamp,
                payload=payload_text,
                signature=x_event_signature,
            )
        except SignatureValidationError as exc:
            logger.warning("internal_call_rejected", extra={"path": request.url.path, "reason": str(exc)})
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail={"code": "UNAUTHORIZED", "message": str(exc)},
            ) from exc

    async def create_from_identity(event: IdentityCreatedEvent) -> tuple[ProfileRecord, bool]:
        return await store.create_if_absent(
            event.id,
            resolve_display_name(event.user_metadata, event.email),
            Role.USER.value,
            created_at=event.created_at,
        )

    @app.exception_handler(HTTPException)
    async def handle_http_exception(_: Request, exc: HTTPException) -> JSONResponse:
        if isinstance(exc.detail, dict):
            return JSONResponse(status_code=exc.status_code, content={"success": False, "error": exc.detail})
        return JSONResponse(status_code=exc.status_code, content=error_response("HTTP_ERROR", str(exc.detail)))

    @app.get("/healthz")
    async def healthz() -> dict[str, object]:
        return success_response({"status": "ok"}, meta={})

    @app.get("/readyz")
    async def readyz() -> dict[str, object]:
        return success_response({"status": "ready"}, meta={})

    @app.get("/v1/profiles")
    async def list_profiles(caller: Caller = Depends(resolve_caller)) -> dict[str, object]:
        if caller.is_admin:
            rows = await store.list_profiles()
        else:
            own = await store.get(caller.identity_id)
            rows = [own] if own is not None else []
        return success_response([row.to_dict() for row in rows], meta={"total": len(rows)})

    @app.get("/v1/profiles/{profile_id}")
    async def get_profile(profile_id: str, caller: Caller = Depends(resolve_caller)) -> dict[str, object]:
        if not can_read(caller, profile_id):
            raise _profile_not_found()
        profile = await store.get(profile_id)
        if profile is None:
            raise _profile_not_found()
        return success_response(profile.to_dict(), meta={})

    @app.post("/v1/profiles", status_code=status.HTTP_201_CREATED)
    async def insert_profile(body: ProfileInsertRequest, caller: Caller = Depends(resolve_caller)) -> dict[str, object]:
        role = _parse_role_or_422(body.role)
        try:
            check_insert(caller, body.id, role.value)
        except PolicyViolationError as exc:
            logger.info("profile_insert_denied", extra={"caller_id": caller.identity_id, "profile_id": body.id})
            raise _rls_denied(exc) from exc
        try:
            saved = await store.insert(ProfileRecord(id=body.id, name=body.name, role=role.value))
        except ProfileAlreadyExistsError as exc:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail={"code": "DUPLICATE_PROFILE", "message": str(exc)},
            ) from exc
        logger.info("profile_inserted", extra={"profile_id": saved.id, "role": saved.role})
        return success_response(saved.to_dict(), meta={})

    @app.post("/v1/rpc/create_user_profile")
    async def create_user_profile(
        body: CreateUserProfileRequest,
        caller: Caller = Depends(resolve_caller),
    ) -> dict[str, object]:
        try:
            target_id, role = check_privileged_call(caller, body.user_id, body.user_role)
        except PolicyViolationError as exc:
            raise _rls_denied(exc) from exc
        name = (body.user_name or "").strip() or None
        saved, created = await store.upsert(target_id, name, role.value, update_role=caller.is_admin)
        logger.info(
            "profile_upserted_via_rpc",
            extra={"profile_id": saved.id, "was_created": created, "caller_id": caller.identity_id},
        )
        return success_response(saved.to_dict(), meta={"created": created})

    @app.patch("/v1/profiles/{profile_id}")
    async def update_profile_name(
        profile_id: str,
        body: ProfileNameUpdateRequest,
        caller: Caller = Depends(resolve_caller),
    ) -> dict[str, object]:
        if not can_update(caller, profile_id):
            raise _profile_not_found()
        updated = await store.update_name(profile_id, body.name)
        if updated is None:
            raise _profile_not_found()
        return success_response(updated.to_dict(), meta={})

    @app.put("/v1/profiles/{profile_id}/role")
    async def assign_role(
        profile_id: str,
        body: RoleAssignmentRequest,
        caller: Caller = Depends(resolve_caller),
    ) -> dict[str, object]:
        try:
            check_role_assignment(caller)
        except PolicyViolationError as exc:
            raise HTTPException(status_code=403, detail={"code": "FORBIDDEN", "message": str(exc)}) from exc
        role = _parse_role_or_422(body.role)
        updated = await store.set_role(profile_id, role.value)
        if updated is None:
            raise _profile_not_found()
        logger.info("profile_role_assigned", extra={"profile_id": profile_id, "role": role.value})
        return success_response(updated.to_dict(), meta={})

    @app.post("/internal/profiles/on-identity-created", dependencies=[Depends(verify_internal_call)])
    async def on_identity_created(event: IdentityCreatedEvent) -> dict[str, object]:
        profile, created = await create_from_identity(event)
        logger.info("profile_trigger_handled", extra={"profile_id": profile.id, "was_created": created})
        return success_response(profile.to_dict(), meta={"created": created})

    @app.post("/internal/profiles/backfill", dependencies=[Depends(verify_internal_call)])
    async def backfill(body: BackfillRequest) -> dict[str, object]:
        created_ids: list[str] = []
        for identity in body.identities:
            profile, created = await create_from_identity(identity)
            if created:
                created_ids.append(profile.id)
        logger.info(
            "profile_backfill_handled",
            extra={"requested": len(body.identities), "created_count": len(created_ids)},
        )
        return success_response({"created": len(created_ids), "created_ids": created_ids}, meta={})

    @app.post("/internal/profiles/assign-role", dependencies=[Depends(verify_internal_call)])
    async def internal_assign_role(body: InternalRoleAssignmentRequest) -> dict[str, Any]:
        role = _parse_role_or_422(body.role)
        updated = await store.set_role(body.id, role.value)
        if updated is None:
            raise _profile_not_found()
        logger.info("profile_role_assigned", extra={"profile_id": body.id, "role": role.value, "source": "internal"})
        return success_response(updated.to_dict(), meta={})

    return app


app = create_app()
