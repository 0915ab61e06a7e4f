from fastapi import FastAPI, Depends, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse, Response
from fastapi.security import HTTPAuthorizationCredentials
from dotenv import load_dotenv
from pathlib import Path

# Load environment variables early
_env_path = Path(__file__).resolve().parents[2] / ".env"
load_dotenv(_env_path)

from typing import Optional
from pydantic import BaseModel, constr, field_validator
from sqlalchemy.exc import OperationalError
from sqlmodel import select
import logging

from . import auth
from .config import get_settings
from .database import get_session, init_db, async_session_factory
from .models import Admin
from .observability import (
    setup_logging,
    init_sentry,
    setup_metrics_middleware,
    get_health_check,
)
from .routes import complaints as complaints_routes
from .routes import admins as admins_routes
from .routes import students as students_routes
from .ticketing import ensure_ticket_counter

# Setup observability
setup_logging()
init_sentry()

# Application logger
logger = logging.getLogger("app")

settings = get_settings()

app = FastAPI(title="Hostel Complaint Ticketing API")

setup_metrics_middleware(app)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Allow all origins for dev; restrict in prod
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(TrustedHostMiddleware, allowed_hosts=list(settings.allowed_hosts) or ["*"])

app.include_router(complaints_routes.router)
app.include_router(students_routes.router)
app.include_router(admins_routes.router)


@app.exception_handler(OperationalError)
async def storage_unavailable_handler(request: Request, exc: OperationalError):
    logger.error("Storage error on %s %s: %s", request.method, request.url.path, exc.orig)
    return JSONResponse(status_code=503, content={"detail": "Storage temporarily unavailable"})


class StudentRegister(BaseModel):
    name: constr(strip_whitespace=True, min_length=1)
    email: str
    student_number: constr(strip_whitespace=True, min_length=1)
    password: constr(min_length=6)
    room_number: Optional[str] = None
    block: Optional[str] = None
    phone: Optional[str] = None

    @field_validator("email")
    @classmethod
    def validate_email_field(cls, v: str) -> str:
        return auth.normalize_email(v)


class AdminRegister(BaseModel):
    full_name: constr(strip_whitespace=True, min_length=1)
    email: str
    password: constr(min_length=6)
    department: Optional[str] = None
    phone: Optional[str] = None
    can_manage_users: bool = False
    can_manage_admins: bool = False

    @field_validator("email")
    @classmethod
    def validate_email_field(cls, v: str) -> str:
        return auth.normalize_email(v)


class LoginRequest(BaseModel):
    username: str
    password: str


def _token_response(account_id: str, role: str) -> dict:
    return {
        "access_token": auth.create_access_token(subject=account_id, role=role),
        "token_type": "bearer",
        "id": str(account_id),
        "role": role,
    }


@app.post("/auth/student/register", status_code=201)
async def register_student(body: StudentRegister, session=Depends(get_session)):
    student = await auth.create_student(
        session,
        name=body.name,
        email=body.email,
        student_number=body.student_number,
        password=body.password,
        room_number=body.room_number,
        block=body.block,
        phone=body.phone,
    )
    logger.info("Registered student %s", student.id)
    return {"email": student.email, "student_number": student.student_number, **_token_response(student.id, auth.STUDENT)}


@app.post("/auth/student/login")
async def login_student(body: LoginRequest, session=Depends(get_session)):
    student = await auth.authenticate_student(body.username, body.password, session)
    if not student:
        raise HTTPException(status_code=401, detail="Invalid username or password")
    return _token_response(student.id, auth.STUDENT)


@app.post("/auth/admin/register", status_code=201)
async def register_admin(
    body: AdminRegister,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(auth.security),
    session=Depends(get_session),
):
    """Create an admin account.

    The very first admin bootstraps the system and receives every permission.
    After that the caller must be an admin allowed to manage admins.
    """
    existing = (await session.exec(select(Admin))).first()
    if existing is None:
        admin = await auth.create_admin(
            session,
            full_name=body.full_name,
            email=body.email,
            password=body.password,
            department=body.department,
            phone=body.phone,
            can_manage_users=True,
            can_manage_admins=True,
        )
        logger.info("Bootstrapped first admin %s", admin.id)
        return {"id": admin.id, "email": admin.email}

    if not credentials or not credentials.credentials:
        raise HTTPException(
            status_code=401,
            detail="Not authenticated",
            headers={"X-Auth-Reason": "Missing bearer token"},
        )
    payload = auth.decode_access_token(credentials.credentials)
    caller = await session.get(Admin, payload.sub) if payload.role == auth.ADMIN else None
    if not caller or not caller.is_active or not caller.can_manage_admins:
        raise HTTPException(status_code=403, detail="Insufficient privileges")

    admin = await auth.create_admin(
        session,
        full_name=body.full_name,
        email=body.email,
        password=body.password,
        department=body.department,
        phone=body.phone,
        can_manage_users=body.can_manage_users,
        can_manage_admins=body.can_manage_admins,
    )
    logger.info("Admin %s created admin %s", caller.id, admin.id)
    return {"id": admin.id, "email": admin.email}


@app.post("/auth/admin/login")
async def login_admin(body: LoginRequest, session=Depends(get_session)):
    admin = await auth.authenticate_admin(body.username, body.password, session)
    if not admin:
        raise HTTPException(status_code=401, detail="Invalid username or password")
    return _token_response(admin.id, auth.ADMIN)


@app.get("/auth/me")
async def me(principal: auth.Principal = Depends(auth.get_current_principal)):
    account = principal.account
    if principal.is_admin:
        return {
            "id": account.id,
            "role": principal.role,
            "full_name": account.full_name,
            "email": account.email,
            "department": account.department,
            "permissions": {
                "can_manage_complaints": account.can_manage_complaints,
                "can_manage_users": account.can_manage_users,
                "can_manage_admins": account.can_manage_admins,
            },
        }
    return {
        "id": account.id,
        "role": principal.role,
        "name": account.name,
        "email": account.email,
        "student_number": account.student_number,
        "room_number": account.room_number,
        "block": account.block,
    }


@app.on_event("startup")
async def on_startup():
    await init_db()
    async with async_session_factory() as session:
        await ensure_ticket_counter(session)


@app.get("/health")
def health():
    """Health check endpoint."""
    return get_health_check()


@app.get("/metrics")
def metrics() -> Response:
    """Prometheus metrics endpoint."""
    from prometheus_client import generate_latest, CONTENT_TYPE_LATEST

    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST, status_code=status.HTTP_200_OK)
