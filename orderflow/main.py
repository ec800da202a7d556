"""FastAPI entrypoint for the order lifecycle and delivery tracking service."""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from orderflow.api.v1.api import api_router
from orderflow.core.config import settings
from orderflow.core.errors import OrderflowError, ValidationError
from orderflow.core.log_config import configure_logging
from orderflow.db import session as db_session
from orderflow.db.base import Base
from orderflow.db.seed import ensure_seed_data
from orderflow.realtime import ConnectionRegistry, LocationBroadcaster
from orderflow.services.notification_service import SmsNotifier

logger = logging.getLogger(__name__)

app = FastAPI(title=settings.app_name, debug=settings.debug)
app.include_router(api_router, prefix="/api/v1")


@app.exception_handler(OrderflowError)
async def orderflow_error_handler(request: Request, exc: OrderflowError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("[ORDER] %s on %s %s: %s", exc.kind, request.method, request.url.path, exc.reason)
    return JSONResponse(status_code=exc.status_code, content=exc.as_dict())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=ValidationError.status_code,
        content={"kind": ValidationError.kind, "detail": jsonable_encoder(exc.errors())},
    )


@app.on_event("startup")
def startup() -> None:
    configure_logging()
    Base.metadata.create_all(bind=db_session.engine)
    if settings.seed_demo_data:
        with db_session.SessionLocal() as session:
            try:
                ensure_seed_data(session)
            except Exception:
                logger.exception("[BOOTSTRAP] Demo seed failed; continuing startup.")

    registry = ConnectionRegistry()
    app.state.registry = registry
    app.state.broadcaster = LocationBroadcaster(registry)
    app.state.notifier = SmsNotifier()
    logger.info("[BOOTSTRAP] %s started env=%s", settings.app_name, settings.app_env)


@app.on_event("shutdown")
def shutdown() -> None:
    registry: ConnectionRegistry | None = getattr(app.state, "registry", None)
    if registry is not None:
        registry.close()
    notifier: SmsNotifier | None = getattr(app.state, "notifier", None)
    if notifier is not None:
        notifier.shutdown()


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}
