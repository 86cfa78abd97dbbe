"""Shared fixtures: in-memory database, seeded organization, API client."""

import os

os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["JWT_SECRET_KEY"] = "test-secret"
os.environ["ENVIRONMENT"] = "development"

from dataclasses import dataclass  # noqa: E402
from datetime import date, datetime, timezone  # noqa: E402
from decimal import Decimal  # noqa: E402

import pytest  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from jose import jwt  # noqa: E402
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from taskhub.config import get_settings  # noqa: E402
from taskhub.db.base import Base  # noqa: E402
from taskhub.db.session import get_db_session  # noqa: E402
from taskhub.main import app  # noqa: E402
from taskhub.models import Employee, Organization, Project  # noqa: E402
from taskhub.security import ROLE_ADMIN, ROLE_USER, Caller  # noqa: E402
from taskhub.services import AssignmentEngine  # noqa: E402


@dataclass
class Seed:
    organization: Organization
    project: Project
    other_project: Project
    admin: Employee
    alice: Employee
    bob: Employee
    carol: Employee
    foreign_project: Project
    foreign_admin: Employee

    def caller(self, employee: Employee) -> Caller:
        return Caller(
            id=employee.id,
            role=employee.role,
            organization_id=employee.organization_id,
        )


def make_token(employee: Employee) -> str:
    settings = get_settings()
    return jwt.encode(
        {
            "sub": str(employee.id),
            "role": employee.role,
            "organization_id": str(employee.organization_id),
        },
        settings.jwt_secret_key.get_secret_value(),
        algorithm=settings.jwt_algorithm,
    )


def auth_headers(employee: Employee) -> dict[str, str]:
    return {"Authorization": f"Bearer {make_token(employee)}"}


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False, autoflush=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
async def seed(db) -> Seed:
    organization = Organization(name="Acme")
    elsewhere = Organization(name="Globex")
    db.add_all([organization, elsewhere])
    await db.flush()

    def employee(org, email, first, role=ROLE_USER):
        return Employee(
            organization_id=org.id,
            email=email,
            first_name=first,
            last_name="Tester",
            role=role,
        )

    admin = employee(organization, "admin@acme.test", "Ada", ROLE_ADMIN)
    alice = employee(organization, "alice@acme.test", "Alice")
    bob = employee(organization, "bob@acme.test", "Bob")
    carol = employee(organization, "carol@acme.test", "Carol")
    foreign_admin = employee(elsewhere, "admin@globex.test", "Gus", ROLE_ADMIN)
    project = Project(organization_id=organization.id, name="Launch")
    other_project = Project(organization_id=organization.id, name="Hiring")
    foreign_project = Project(organization_id=elsewhere.id, name="Secret")
    db.add_all([admin, alice, bob, carol, foreign_admin, project, other_project, foreign_project])
    await db.commit()
    # Detached copies survive rollbacks triggered by failing operations
    db.expunge_all()

    return Seed(
        organization=organization,
        project=project,
        other_project=other_project,
        admin=admin,
        alice=alice,
        bob=bob,
        carol=carol,
        foreign_project=foreign_project,
        foreign_admin=foreign_admin,
    )


@pytest.fixture
def create_task(db, seed):
    """Create a task through the assignment engine as the seeded admin by default."""

    async def _create(description="Task", caller=None, **kwargs):
        kwargs.setdefault("points", Decimal("0"))
        kwargs.setdefault("project_id", seed.project.id)
        return await AssignmentEngine(db).create(
            caller or seed.caller(seed.admin),
            description=description,
            **kwargs,
        )

    return _create


@pytest.fixture
def today() -> date:
    return datetime.now(timezone.utc).date()


@pytest.fixture
async def client(session_factory, seed):
    async def override_get_db_session():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db_session] = override_get_db_session
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
