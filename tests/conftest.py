import os
import tempfile
from datetime import datetime, timedelta, timezone

# Settings are read at import time
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("JWT_SECRET", "test-secret")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("ENABLE_EMAIL", "false")
os.environ.setdefault("AUTO_CREATE_DB", "false")
os.environ.setdefault("UPLOAD_DIR", tempfile.mkdtemp(prefix="tasknest-uploads-"))

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.auth.security import create_access_token
from app.db import Base, get_db
from app.main import app
from app.models.models import Project, Task, User
from app.services.users import create_user


@pytest.fixture(scope="session")
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    yield engine
    engine.dispose()


@pytest.fixture()
def db_session(engine):
    Base.metadata.create_all(bind=engine)
    Session = sessionmaker(bind=engine, autoflush=False, autocommit=False)
    session = Session()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def client(db_session):
    def _override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = _override_get_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.pop(get_db, None)


@pytest.fixture()
def make_user(db_session):
    counter = {"n": 0}

    def _make(name: str = None, role: str = "employee", password: str = "secret123", **kwargs) -> User:
        counter["n"] += 1
        name = name or f"User {counter['n']}"
        email = kwargs.pop("email", None) or f"{name.lower().replace(' ', '.')}.{counter['n']}@tasknest.io"
        user = create_user(db_session, name=name, email=email, password=password, role=role, **kwargs)
        db_session.commit()
        return user

    return _make


@pytest.fixture()
def admin(make_user):
    return make_user("Ada Admin", role="admin")


@pytest.fixture()
def employee(make_user):
    return make_user("Bob Builder")


@pytest.fixture()
def other_employee(make_user):
    return make_user("Carol Jones")


def auth_headers(user: User) -> dict:
    return {"Authorization": f"Bearer {create_access_token(str(user.id), user.role)}"}


@pytest.fixture()
def headers():
    return auth_headers


@pytest.fixture()
def make_project(db_session):
    def _make(manager: User, name: str = "Apollo", team=(), **kwargs) -> Project:
        now = datetime.now(timezone.utc)
        project = Project(
            name=name,
            description=kwargs.pop("description", f"{name} project"),
            start_date=kwargs.pop("start_date", now),
            end_date=kwargs.pop("end_date", now + timedelta(days=30)),
            manager_id=manager.id,
            created_by_id=manager.id,
            tags=kwargs.pop("tags", []),
            progress=0,
            **kwargs,
        )
        project.team = list(team)
        db_session.add(project)
        db_session.commit()
        return project

    return _make


@pytest.fixture()
def project(make_project, admin, employee):
    return make_project(admin, team=[employee])


@pytest.fixture()
def make_task(db_session):
    from app.services import task_service

    def _make(project: Project, creator: User, assignee: User, title: str = "Write report", **kwargs) -> Task:
        task = task_service.create_task(
            db_session,
            creator,
            title=title,
            project_id=project.id,
            assigned_to_id=assignee.id,
            **kwargs,
        )
        db_session.commit()
        return task

    return _make


@pytest.fixture()
def task(make_task, project, admin, employee):
    return make_task(project, admin, employee)
