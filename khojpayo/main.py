import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, func, select
from starlette.exceptions import HTTPException as StarletteHTTPException

from khojpayo import config
from khojpayo.db.db import create_db_and_tables, get_session
from khojpayo.models.user import Profile
from khojpayo.routers import (
    admin,
    auth,
    claims,
    conversations,
    handovers,
    items,
    notifications,
    org_members,
    org_verification,
    organizations,
    profile,
)
from khojpayo.utils.form_validator import format_validation_errors

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_: FastAPI):
    create_db_and_tables()
    yield


app = FastAPI(title="KhojPayo", lifespan=lifespan)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Every error leaves as {"error": ...}
@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content={"error": format_validation_errors(exc.errors())},
    )


@app.exception_handler(SQLAlchemyError)
async def database_exception_handler(request: Request, exc: SQLAlchemyError):
    logger.exception("database error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"error": "Database error"})


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


# Register routers
app.include_router(auth.router, prefix="/auth", tags=["Authentication"])
app.include_router(profile.router, prefix="/profile", tags=["Profile"])
app.include_router(items.router, prefix="/items", tags=["Items"])
app.include_router(claims.router, prefix="/claims", tags=["Claims"])
app.include_router(handovers.router, prefix="/claims", tags=["Handovers"])
app.include_router(conversations.router, prefix="/conversations", tags=["Conversations"])
app.include_router(notifications.router, prefix="/notifications", tags=["Notifications"])
app.include_router(organizations.router, prefix="/organizations", tags=["Organizations"])
app.include_router(org_verification.router, prefix="/organizations", tags=["Organization Verification"])
app.include_router(org_members.router, prefix="/organizations", tags=["Organization Members"])
app.include_router(admin.router, prefix="/admin/verifications", tags=["Admin"])


@app.get("/")
def root():
    return {"status": "ok"}


@app.get("/health")
def health(session: Session = Depends(get_session)):
    profiles = session.exec(select(func.count(Profile.id))).one()
    return {"status": "ok", "database": "connected", "profiles": profiles}
