import pytest
import os
import uuid
from datetime import date
from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session
from sqlalchemy.pool import StaticPool

# Set env before importing app components
os.environ["APP_ENV"] = "testing"
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["RATE_LIMIT_ENABLED"] = "false"

from app.database import Base, get_db
from app.main import app
from fastapi.testclient import TestClient

# SQLite in-memory database configuration
SQLALCHEMY_DATABASE_URL = "sqlite:///:memory:"

engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)


# pysqlite needs these two hooks for SAVEPOINT to work, see
# https://docs.sqlalchemy.org/en/20/dialects/sqlite.html#serializable-isolation-savepoints-transactional-ddl
@event.listens_for(engine, "connect")
def _disable_pysqlite_transactions(dbapi_connection, connection_record):
    dbapi_connection.isolation_level = None


@event.listens_for(engine, "begin")
def _emit_begin(conn):
    conn.exec_driver_sql("BEGIN")


@pytest.fixture(scope="session", autouse=True)
def setup_database():
    """Create tables once for the whole test session."""
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def db_session():
    """
    A session inside an outer transaction that is rolled back after the test.
    Commits and rollbacks issued by application code only touch a savepoint.
    """
    connection = engine.connect()
    transaction = connection.begin()
    session = Session(bind=connection, join_transaction_mode="create_savepoint")

    yield session

    session.close()
    transaction.rollback()
    connection.close()


@pytest.fixture(scope="function")
def leave_types(db_session):
    """The standard leave type catalog, keyed by name."""
    from app.core.init_system import seed_leave_types
    from app.models.leave_type import LeaveType

    seed_leave_types(db_session)
    db_session.commit()
    return {lt.name: lt for lt in db_session.query(LeaveType).all()}


@pytest.fixture(scope="function")
def make_user(db_session, leave_types):
    """Factory for users of any role."""
    from app.models.user import User, UserRole
    from app.services import auth as auth_service

    def _make_user(role=UserRole.EMPLOYEE, manager=None, department="Engineering",
                   password="Password123!", is_active=True, **overrides):
        suffix = uuid.uuid4().hex[:8]
        user = User(
            employee_code=overrides.pop("employee_code", f"EMP-{suffix}"),
            first_name=overrides.pop("first_name", role.value.title()),
            last_name=overrides.pop("last_name", suffix),
            email=overrides.pop("email", f"{role.value}-{suffix}@example.com"),
            hashed_password=auth_service.get_password_hash(password),
            role=role,
            department=department,
            position=overrides.pop("position", "Staff"),
            manager_id=manager.id if manager else None,
            hire_date=overrides.pop("hire_date", date(2022, 1, 10)),
            is_active=is_active,
        )
        db_session.add(user)
        db_session.commit()
        return user
    return _make_user


@pytest.fixture(scope="function")
def admin_user(make_user):
    from app.models.user import UserRole
    return make_user(UserRole.ADMIN, department="Administration")


@pytest.fixture(scope="function")
def hr_user(make_user):
    from app.models.user import UserRole
    return make_user(UserRole.HR, department="People")


@pytest.fixture(scope="function")
def manager_user(make_user):
    from app.models.user import UserRole
    return make_user(UserRole.MANAGER)


@pytest.fixture(scope="function")
def employee_user(make_user, manager_user):
    from app.models.user import UserRole
    return make_user(UserRole.EMPLOYEE, manager=manager_user)


@pytest.fixture(scope="function")
def get_token():
    """Helper fixture to create access tokens."""
    from app.services.auth import build_token_claims, create_access_token

    def _get_token(user):
        return create_access_token(data=build_token_claims(user))
    return _get_token


@pytest.fixture(scope="function")
def auth_headers(get_token):
    def _auth_headers(user):
        return {"Authorization": f"Bearer {get_token(user)}"}
    return _auth_headers


@pytest.fixture(scope="function")
def client(db_session):
    """Get a TestClient that uses the test database session via dependency override."""
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    # No context manager: the lifespan would seed the application's own database
    yield TestClient(app)
    app.dependency_overrides.clear()
