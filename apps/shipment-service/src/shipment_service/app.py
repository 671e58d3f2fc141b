from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
import logging
from typing import Any

from devkit.config import load_settings
from devkit.observability import configure_otel, configure_probe_access_log_filter
from devkit.redis import create_redis_client, create_revoked_session_store
from devkit.timezone import now_wib, now_wib_iso
from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request, WebSocket, status
from fastapi.responses import JSONResponse

from shared.security import ACCESS_TOKEN_TYPE, JWTManager, SessionTokenPayload
from shipment_service.dependencies import ProfileRoleResolver, RoleLookupError, get_role_resolver, lookup_role
from shipment_service.feed import ChangeSubscription, ShipmentChangeFeed
from shipment_service.models import CONSTRAINT_OPTIONS, Caller, ShipmentRecord, ShipmentStatus
from shipment_service.schemas import LocationUpdateRequest, ShipmentCreateRequest, ShipmentUpdateRequest
from shipment_service.store import ShipmentNotFoundError, ShipmentStore

logger = logging.getLogger(__name__)

WS_CLOSE_BAD_REQUEST = 4400
WS_CLOSE_UNAUTHORIZED = 4401
WS_CLOSE_ROLE_UNAVAILABLE = 1011
HEARTBEAT_SECONDS = 20.0

_DRIVER_EDITABLE_FIELDS = frozenset({"status", "arrival_date", "arrival_time", "constraint_note"})


def success_response(data: object, meta: dict[str, object] | None = None) -> dict[str, object]:
    return {"success": True, "data": data, "meta": meta or {}}


def error_response(code: str, message: str) -> dict[str, object]:
    return {"success": False, "error": {"code": code, "message": message}}


def _forbidden(message: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail={"code": "FORBIDDEN", "message": message})


def _not_found() -> HTTPException:
    return HTTPException(status_code=404, detail={"code": "SHIPMENT_NOT_FOUND", "message": "shipment not found"})


def _apply_status_rules(changes: dict[str, Any], current: ShipmentRecord) -> dict[str, Any]:
    """Completing a delivery stamps the arrival; failing one needs a constraint note."""
    new_status = changes.get("status")
    if new_status == ShipmentStatus.DELIVERED:
        now = now_wib()
        changes.setdefault("arrival_date", now.date())
        changes.setdefault("arrival_time", now.time().replace(second=0, microsecond=0))
        changes.setdefault("constraint_note", None)
    elif new_status == ShipmentStatus.FAILED:
        note = changes.get("constraint_note", current.constraint_note)
        if not note:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail={"code": "CONSTRAINT_REQUIRED", "message": "a failed delivery needs a constraint note"},
            )
    return changes


def create_app() -> FastAPI:
    settings = load_settings("shipment-service")
    configure_otel(settings.SERVICE_NAME)
    jwt = JWTManager(secret=settings.JWT_SECRET_KEY)
    redis_client = create_redis_client(settings.REDIS_URL)
    revoked_store = create_revoked_session_store(redis_client)
    feed = ShipmentChangeFeed()
    store = ShipmentStore(database_url=settings.DATABASE_URL, feed=feed)

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        await store.ensure_ready()
        try:
            yield
        finally:
            await feed.close()
            await store.close()
            if redis_client is not None:
                await redis_client.close()

    app = FastAPI(title="Shipment Service", version="0.1.0", lifespan=lifespan)
    app.state.role_resolver = ProfileRoleResolver(settings.PROFILE_SERVICE_BASE_URL)
    app.state.shipment_store = store
    app.state.change_feed = feed
    configure_probe_access_log_filter()

    async def authenticate(token: str) -> SessionTokenPayload:
        payload = jwt.decode(token, expected_type=ACCESS_TOKEN_TYPE)
        if await revoked_store.is_revoked(payload.sid):
            raise ValueError("session has been signed out")
        return payload

    async def resolve_caller(
        authorization: str | None = Header(default=None),
        resolver: ProfileRoleResolver = Depends(get_role_resolver),
    ) -> Caller:
        if not authorization or not authorization.lower().startswith("bearer "):
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail={"code": "UNAUTHORIZED", "message": "missing bearer token"},
            )
        token = authorization.split(" ", 1)[1]
        try:
            payload = await authenticate(token)
        except ValueError as exc:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail={"code": "INVALID_TOKEN", "message": str(exc)},
            ) from exc
        role = await lookup_role(resolver, payload.sub, token)
        return Caller(identity_id=payload.sub, role=role, access_token=token)

    def require_admin(caller: Caller = Depends(resolve_caller)) -> Caller:
        if not caller.is_admin:
            raise _forbidden("admin role required")
        return caller

    async def load_visible(shipment_id: str, caller: Caller) -> ShipmentRecord:
        shipment = await store.get(shipment_id)
        if shipment is None or not (caller.is_admin or caller.is_assigned_to(shipment)):
            raise _not_found()
        return shipment

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

    @app.get("/v1/shipments")
    async def list_shipments(
        status_filter: ShipmentStatus | None = Query(default=None, alias="status"),
        driver_id: str | None = Query(default=None),
        caller: Caller = Depends(resolve_caller),
    ) -> dict[str, object]:
        if not caller.is_admin:
            driver_id = caller.identity_id
        rows = await store.list_shipments(
            status=status_filter.value if status_filter else None,
            driver_id=driver_id,
        )
        return success_response([row.to_dict() for row in rows], meta={"total": len(rows)})

    @app.get("/v1/shipments/summaries")
    async def company_summaries(_: Caller = Depends(require_admin)) -> dict[str, object]:
        summaries = await store.company_summaries()
        return success_response([item.to_dict() for item in summaries], meta={"generated_at": now_wib_iso()})

    @app.get("/v1/shipments/constraint-options")
    async def constraint_options(_: Caller = Depends(resolve_caller)) -> dict[str, object]:
        return success_response(list(CONSTRAINT_OPTIONS), meta={})

    @app.post("/v1/shipments", status_code=status.HTTP_201_CREATED)
    async def create_shipment(
        body: ShipmentCreateRequest,
        caller: Caller = Depends(require_admin),
    ) -> dict[str, object]:
        created = await store.create(body.model_dump(), actor_id=caller.identity_id)
        logger.info("shipment_created", extra={"shipment_id": created.id, "company": created.company})
        return success_response(created.to_dict(), meta={})

    @app.get("/v1/shipments/{shipment_id}")
    async def get_shipment(shipment_id: str, caller: Caller = Depends(resolve_caller)) -> dict[str, object]:
        return success_response((await load_visible(shipment_id, caller)).to_dict(), meta={})

    @app.patch("/v1/shipments/{shipment_id}")
    async def update_shipment(
        shipment_id: str,
        body: ShipmentUpdateRequest,
        caller: Caller = Depends(resolve_caller),
    ) -> dict[str, object]:
        current = await load_visible(shipment_id, caller)
        changes = body.model_dump(exclude_unset=True)
        notes = changes.pop("notes", None)
        if not caller.is_admin:
            disallowed = sorted(set(changes) - _DRIVER_EDITABLE_FIELDS)
            if disallowed:
                raise _forbidden(f"drivers may not change: {', '.join(disallowed)}")
        changes = _apply_status_rules(changes, current)
        try:
            updated = await store.update(shipment_id, changes, actor_id=caller.identity_id, notes=notes)
        except ShipmentNotFoundError as exc:
            raise _not_found() from exc
        logger.info(
            "shipment_updated",
            extra={"shipment_id": shipment_id, "status": updated.status, "actor_id": caller.identity_id},
        )
        return success_response(updated.to_dict(), meta={})

    @app.put("/v1/shipments/{shipment_id}/location")
    async def update_location(
        shipment_id: str,
        body: LocationUpdateRequest,
        caller: Caller = Depends(resolve_caller),
    ) -> dict[str, object]:
        await load_visible(shipment_id, caller)
        try:
            updated = await store.update(
                shipment_id,
                {"current_lat": body.lat, "current_lng": body.lng},
                actor_id=caller.identity_id,
            )
        except ShipmentNotFoundError as exc:
            raise _not_found() from exc
        return success_response(updated.to_dict(), meta={})

    @app.delete("/v1/shipments/{shipment_id}")
    async def delete_shipment(shipment_id: str, caller: Caller = Depends(require_admin)) -> dict[str, object]:
        try:
            await store.delete(shipment_id)
        except ShipmentNotFoundError as exc:
            raise _not_found() from exc
        logger.info("shipment_deleted", extra={"shipment_id": shipment_id, "actor_id": caller.identity_id})
        return success_response({"deleted": True}, meta={})

    @app.get("/v1/shipments/{shipment_id}/history")
    async def shipment_history(shipment_id: str, caller: Caller = Depends(resolve_caller)) -> dict[str, object]:
        await load_visible(shipment_id, caller)
        history = await store.list_history(shipment_id)
        return success_response([entry.to_dict() for entry in history], meta={"total": len(history)})

    @app.websocket("/v1/shipments/changes")
    async def shipment_changes(
        websocket: WebSocket,
        status_filter: str | None = Query(default=None, alias="status"),
        access_token: str | None = Query(default=None),
        resolver: ProfileRoleResolver = Depends(get_role_resolver),
    ) -> None:
        if status_filter is not None and status_filter not in {item.value for item in ShipmentStatus}:
            await websocket.close(code=WS_CLOSE_BAD_REQUEST)
            return
        try:
            payload = await authenticate(access_token or "")
        except ValueError:
            await websocket.close(code=WS_CLOSE_UNAUTHORIZED)
            return
        try:
            role = await resolver.resolve_role(payload.sub, access_token or "")
        except RoleLookupError:
            logger.warning("shipment_feed_role_unavailable", extra={"identity_id": payload.sub})
            await websocket.close(code=WS_CLOSE_ROLE_UNAVAILABLE)
            return
        caller = Caller(identity_id=payload.sub, role=role)

        await websocket.accept()
        subscription = await feed.subscribe(
            status_filter=status_filter,
            driver_id=None if caller.is_admin else caller.identity_id,
        )
        pump: asyncio.Task[None] | None = None
        try:
            await websocket.send_json({"type": "ready", "status": status_filter})
            pump = asyncio.create_task(_pump_changes(websocket, subscription))
            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    break
        finally:
            # nothing here may suspend: the server cancels the handler when the client goes away
            feed.discard(subscription)
            if pump is not None:
                pump.cancel()
            logger.info("shipment_feed_closed", extra={"client_id": subscription.client_id})

    return app


async def _pump_changes(websocket: WebSocket, subscription: ChangeSubscription) -> None:
    while True:
        try:
            envelope = await asyncio.wait_for(subscription.next_change(), timeout=HEARTBEAT_SECONDS)
        except asyncio.TimeoutError:
            await websocket.send_json({"type": "heartbeat", "ts": now_wib_iso()})
            continue
        if envelope is None:
            await websocket.close(code=1000)
            return
        await websocket.send_json({"type": "change", "payload": envelope.to_dict()})


app = create_app()
