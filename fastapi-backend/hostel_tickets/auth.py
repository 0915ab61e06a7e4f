from dataclasses import dataclass
from typing import Optional, Union
from datetime import datetime, timedelta, timezone
import logging

from pydantic import BaseModel
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from email_validator import validate_email, EmailNotValidError
from jose import jwt, JWTError
from passlib.context import CryptContext
from sqlmodel import select, or_

from .config import get_settings
from .database import get_session
from .models import Admin, Student

logger = logging.getLogger("app.auth")

_settings = get_settings()

SECRET_KEY = _settings.jwt_secret
if not SECRET_KEY:
    raise ValueError("JWT_SECRET not found in environment or .env file.")

ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = _settings.jwt_access_minutes

STUDENT = "student"
ADMIN = "admin"

# pbkdf2_sha256, no bcrypt C-extension needed
pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")
# auto_error=False: missing credentials are answered by get_current_principal
security = HTTPBearer(auto_error=False)


class TokenPayload(BaseModel):
    sub: str
    role: Optional[str] = None
    exp: Optional[int] = None


@dataclass
class Principal:
    """The authenticated caller: a student or an admin account."""

    id: str
    role: str
    account: Union[Student, Admin]

    @property
    def is_admin(self) -> bool:
        return self.role == ADMIN


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def normalize_email(value: str) -> str:
    try:
        return validate_email(value, check_deliverability=False).normalized.lower()
    except EmailNotValidError as e:
        raise ValueError(f"Invalid email address: {e}")


def create_access_token(subject: str, role: str, expires_delta: Optional[timedelta] = None) -> str:
    to_encode = {"sub": str(subject), "role": role}
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": int(expire.timestamp())})
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def decode_access_token(token: str) -> TokenPayload:
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
        return TokenPayload(**payload)
    except JWTError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication credentials",
            headers={"X-Auth-Reason": "Invalid token"},
        ) from exc


async def authenticate_student(username: str, password: str, session) -> Optional[Student]:
    # Students may log in with their email or their student number
    statement = select(Student).where(
        or_(Student.email == username.lower(), Student.student_number == username.upper())
    )
    student = (await session.exec(statement)).first()
    if not student or not verify_password(password, student.password_hash):
        return None
    return student


async def authenticate_admin(email: str, password: str, session) -> Optional[Admin]:
    admin = (await session.exec(select(Admin).where(Admin.email == email.lower()))).first()
    if not admin or not verify_password(password, admin.password_hash):
        return None
    if not admin.is_active:
        logger.info("Rejected login for deactivated admin %s", admin.id)
        return None
    return admin


async def get_current_principal(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    session=Depends(get_session),
) -> Principal:
    if not credentials or not getattr(credentials, "credentials", None):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"X-Auth-Reason": "No credentials"},
        )

    payload = decode_access_token(credentials.credentials)
    role = (payload.role or "").lower()
    if role == ADMIN:
        account = await session.get(Admin, payload.sub)
        if account is not None and not account.is_active:
            account = None
    elif role == STUDENT:
        account = await session.get(Student, payload.sub)
    else:
        account = None

    if account is None:
        logger.info("Token subject %r (role=%r) did not resolve to an account", payload.sub, role)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication credentials",
            headers={"X-Auth-Reason": "Token subject not found"},
        )
    return Principal(id=account.id, role=role, account=account)


def require_role(required_role: str):
    async def role_checker(principal: Principal = Depends(get_current_principal)) -> Principal:
        if principal.role != required_role:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Access denied. {required_role.capitalize()} privileges required.",
            )
        return principal
    return role_checker


def require_admin_permission(flag: str):
    """Admin-only dependency that also checks a permission flag on the account."""
    async def permission_checker(principal: Principal = Depends(require_role(ADMIN))) -> Principal:
        if not getattr(principal.account, flag, False):
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient privileges")
        return principal
    return permission_checker


async def create_student(
    session,
    name: str,
    email: str,
    student_number: str,
    password: str,
    room_number: Optional[str] = None,
    block: Optional[str] = None,
    phone: Optional[str] = None,
) -> Student:
    email = email.lower()
    student_number = student_number.upper()
    existing = (
        await session.exec(
            select(Student).where(or_(Student.email == email, Student.student_number == student_number))
        )
    ).first()
    if existing:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="A student with this email or student number already exists",
        )

    student = Student(
        name=name,
        email=email,
        student_number=student_number,
        room_number=room_number,
        block=block,
        phone=phone,
        password_hash=get_password_hash(password),
    )
    session.add(student)
    await session.commit()
    await session.refresh(student)
    return student


async def create_admin(
    session,
    full_name: str,
    email: str,
    password: str,
    department: Optional[str] = None,
    phone: Optional[str] = None,
    can_manage_complaints: bool = True,
    can_manage_users: bool = False,
    can_manage_admins: bool = False,
) -> Admin:
    email = email.lower()
    existing = (await session.exec(select(Admin).where(Admin.email == email))).first()
    if existing:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="An admin with this email already exists",
        )

    admin = Admin(
        full_name=full_name,
        email=email,
        department=department,
        phone=phone,
        password_hash=get_password_hash(password),
        can_manage_complaints=can_manage_complaints,
        can_manage_users=can_manage_users,
        can_manage_admins=can_manage_admins,
    )
    session.add(admin)
    await session.commit()
    await session.refresh(admin)
    return admin
