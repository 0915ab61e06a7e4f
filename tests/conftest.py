from typing import Awaitable, Callable, Tuple

import httpx
import pytest_asyncio
from sqlalchemy.orm import sessionmaker
from sqlmodel.ext.asyncio.session import AsyncSession

from hostel_tickets import auth
from hostel_tickets.database import build_engine, get_session, init_db
from hostel_tickets.main import app
from hostel_tickets.ticketing import ensure_ticket_counter


@pytest_asyncio.fixture(scope="function")
async def db_engine(tmp_path):
    # A file database per test: in-memory SQLite would share one connection
    # and hide the locking the allocator relies on.
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'tickets.db'}")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def session_factory(db_engine):
    factory = sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)
    async with factory() as session:
        await ensure_ticket_counter(session)
    return factory


@pytest_asyncio.fixture(scope="function")
async def client(session_factory):
    async def _get_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = _get_session
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()


@pytest_asyncio.fixture(scope="function")
async def make_student(session_factory) -> Callable[..., Awaitable[Tuple[str, str]]]:
    """Return a factory that creates a student directly in the DB and returns (id, token)."""

    async def _create(email: str, student_number: str, password: str = "testpass"):
        async with session_factory() as session:
            student = await auth.create_student(
                session,
                name=email.split("@")[0],
                email=email,
                student_number=student_number,
                password=password,
                room_number="B12",
                block="B",
            )
            token = auth.create_access_token(subject=student.id, role=auth.STUDENT)
            return student.id, token

    return _create


@pytest_asyncio.fixture(scope="function")
async def make_admin(session_factory) -> Callable[..., Awaitable[Tuple[str, str]]]:
    """Return a factory that creates an admin directly in the DB and returns (id, token)."""

    async def _create(email: str, password: str = "adminpass", **permissions):
        async with session_factory() as session:
            admin = await auth.create_admin(
                session,
                full_name=email.split("@")[0],
                email=email,
                password=password,
                department="Works",
                **permissions,
            )
            token = auth.create_access_token(subject=admin.id, role=auth.ADMIN)
            return admin.id, token

    return _create


@pytest_asyncio.fixture(scope="function")
async def student(make_student):
    return await make_student("ada@students.example.com", "STU001")


@pytest_asyncio.fixture(scope="function")
async def other_student(make_student):
    return await make_student("bola@students.example.com", "STU002")


@pytest_asyncio.fixture(scope="function")
async def admin(make_admin):
    return await make_admin("warden@hostel.example.com", can_manage_users=True, can_manage_admins=True)


@pytest_asyncio.fixture(scope="function")
async def submit(client):
    """Return a coroutine that submits a complaint as the given student token."""

    async def _submit(token: str, **overrides):
        payload = {
            "category": "plumbing",
            "title": "Leaking tap",
            "description": "The tap in the second floor bathroom will not stop dripping",
            "location": "Block B, floor 2",
        }
        payload.update(overrides)
        r = await client.post(
            "/api/v1/complaints", json=payload, headers={"Authorization": f"Bearer {token}"}
        )
        assert r.status_code == 201, r.text
        return r.json()

    return _submit
