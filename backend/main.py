import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from core.auth import auth_backend, fastapi_users
from core.config import settings
from core.errors import LedgerError
from db.database import create_db_and_tables, engine
from db.migrations import run_startup_migrations
from routers.assignments import router as assignments_router
from routers.inventory import router as inventory_router
from routers.locations import router as locations_router
from routers.requests import router as requests_router
from routers.users import router as organization_router
from schemas.users import UserRead, UserUpdate

logger = logging.getLogger(__name__)


def configure_logging() -> None:
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    await create_db_and_tables()
    await run_startup_migrations(engine)
    logger.info("Stockroom API ready")
    yield


app = FastAPI(
    title="Stockroom API",
    description="Organization inventory: stock ledger, assignments and location requests",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(LedgerError)
async def ledger_error_handler(request: Request, exc: LedgerError):
    if exc.status_code >= 500:
        logger.error("%s on %s %s: %s", exc.code, request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


# Authentication routes (fastapi-users). Accounts are created through organization
# registration or invites, so the public register router is not mounted.
app.include_router(fastapi_users.get_auth_router(auth_backend), prefix="/auth/jwt", tags=["auth"])
app.include_router(fastapi_users.get_reset_password_router(), prefix="/auth", tags=["auth"])
app.include_router(fastapi_users.get_users_router(UserRead, UserUpdate), prefix="/users", tags=["users"])

# Organization, members and invites
app.include_router(organization_router, tags=["organizations"])

# Inventory routes
app.include_router(inventory_router, prefix="/inventory", tags=["inventory"])
app.include_router(assignments_router, prefix="/assignments", tags=["assignments"])
app.include_router(locations_router, prefix="/locations", tags=["locations"])
app.include_router(requests_router, prefix="/requests", tags=["requests"])

if __name__ == "__main__":
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=True)
