import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from db import create_db_and_tables
from logging_config import setup_logging
from routers import auth, basket, events, funding, needs, users
from routers.auth import OptionalUserRoleDep
from services.errors import NeedsConnectError

setup_logging()
logger = logging.getLogger(__name__)

app = FastAPI(title="NeedsConnect")


@app.on_event("startup")
def on_startup() -> None:
    create_db_and_tables()
    logger.info("NeedsConnect started")


@app.exception_handler(NeedsConnectError)
async def domain_error_handler(request: Request, exc: NeedsConnectError) -> JSONResponse:
    if exc.status_code >= 409:
        logger.info("request conflict: %s", exc.message, extra={"path": request.url.path})
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "error": type(exc).__name__},
    )


@app.exception_handler(SQLAlchemyError)
async def storage_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    # Details stay in the server log; the client only learns that it failed.
    logger.error("storage error", exc_info=exc, extra={"path": request.url.path})
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


@app.get("/")
def read_root(current: OptionalUserRoleDep):
    user = current["user"] if current else None
    role = current["role"] if current else None
    return {
        "name": "NeedsConnect",
        "current_user": user.username if user else None,
        "current_role": role,
    }


app.include_router(auth.router)
app.include_router(users.router, prefix="/users")
app.include_router(needs.router, prefix="/needs")
app.include_router(basket.router, prefix="/basket")
app.include_router(funding.router, prefix="/funding")
app.include_router(events.router, prefix="/events")
