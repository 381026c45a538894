import asyncio
import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from .api import (
    auth,
    campaigns,
    community,
    condominiums,
    finance,
    messages,
    occurrences,
    payroll,
    realtime,
    registration,
    system,
)
from .auth.jwt import decode_token
from .config import Base, SessionLocal, engine, settings
from .core.errors import register_exception_handlers
from .core.logging import configure_logging
from .core.request_context import request_id_middleware
from .core.security import SecurityHeadersMiddleware, log_security_warnings
from .services.audit import audit_log
from .services.change_feed import change_feed, install_session_hooks, realtime_hub
from .services.provisioning import install_provisioning_trigger

configure_logging(settings.log_level, json_logs=settings.log_json)

logger = logging.getLogger(__name__)

install_session_hooks()
install_provisioning_trigger()

app = FastAPI(title="Condominium Portal")

register_exception_handlers(app)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(SecurityHeadersMiddleware)
app.middleware("http")(request_id_middleware)


@app.on_event("startup")
def startup() -> None:
    # In dev we make sure tables exist.
    Base.metadata.create_all(bind=engine)
    log_security_warnings(settings.jwt_secret, settings.database_url)


@app.on_event("startup")
async def configure_realtime_hub() -> None:
    realtime_hub.configure_loop(asyncio.get_running_loop())


@app.on_event("shutdown")
async def shutdown_realtime_hub() -> None:
    await realtime_hub.shutdown()
    change_feed.shutdown()


app.include_router(auth.router, prefix="/auth", tags=["auth"])
app.include_router(registration.router, prefix="/registration", tags=["registration"])
app.include_router(condominiums.router, prefix="/condominiums", tags=["condominiums"])
app.include_router(finance.router, prefix="/finance", tags=["finance"])
app.include_router(payroll.router, prefix="/payroll", tags=["payroll"])
app.include_router(campaigns.router, prefix="/campaigns", tags=["campaigns"])
app.include_router(messages.router, prefix="/messages", tags=["messages"])
app.include_router(community.router, prefix="/community", tags=["community"])
app.include_router(occurrences.router, prefix="/occurrences", tags=["occurrences"])
app.include_router(realtime.router, prefix="/realtime", tags=["realtime"])
app.include_router(system.router, prefix="/system", tags=["system"])


@app.middleware("http")
async def audit_trail(request: Request, call_next):
    response = await call_next(request)
    if request.method not in {"POST", "PUT", "PATCH", "DELETE"}:
        return response
    if request.url.path.startswith(("/registration", "/auth/login", "/auth/refresh")):
        return response
    actor_id = None
    auth_header = request.headers.get("Authorization")
    if auth_header and auth_header.lower().startswith("bearer "):
        token = auth_header.split(" ", 1)[1]
        try:
            actor_id = int(decode_token(token).get("sub"))
        except Exception:
            actor_id = None
    with SessionLocal() as session:
        audit_log(
            db_session=session,
            actor_user_id=actor_id,
            action=f"{request.method} {request.url.path}",
            target_entity_type="HTTP",
            target_entity_id=request.url.path,
            after={"status": response.status_code},
        )
        session.commit()
    return response
