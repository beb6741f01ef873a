import os

os.environ.setdefault("APPROVALS_DATABASE_URL", "sqlite://")

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from approval_tracker import services  # noqa: E402
from approval_tracker.approval_service import ApprovalService  # noqa: E402
from approval_tracker.database import Base, get_db, init_db  # noqa: E402
from approval_tracker.main import app  # noqa: E402
from approval_tracker.models import UserRole  # noqa: E402
from approval_tracker.project_approvals import ProjectApprovalService  # noqa: E402
from approval_tracker.repository import ApprovalRepository  # noqa: E402


@pytest.fixture()
def db_session():
    engine = create_engine(
        "sqlite+pysqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    init_db(engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture()
def client(db_session):
    def _override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = _override_get_db
    with TestClient(app) as client:
        yield client
    app.dependency_overrides.clear()


@pytest.fixture()
def approval_service(db_session):
    return ApprovalService(ApprovalRepository(db_session))


@pytest.fixture()
def project_approval_service(db_session):
    return ProjectApprovalService(ApprovalRepository(db_session))


@pytest.fixture()
def users(db_session):
    """Owner plus three approvers: alice, bob and carol."""
    return {
        "owner": services.create_user(
            db_session, "owner", "Olivia Owner", "owner@example.com"
        ),
        "alice": services.create_user(
            db_session, "alice", "Alice Adams", "alice@example.com", role=UserRole.APPROVER
        ),
        "bob": services.create_user(
            db_session, "bob", "Bob Brown", "bob@example.com", role=UserRole.APPROVER
        ),
        "carol": services.create_user(
            db_session, "carol", "Carol Clark", "carol@example.com", role=UserRole.APPROVER
        ),
    }


@pytest.fixture()
def project(db_session, users):
    return services.create_project(
        db_session, title="Data platform migration", project_type="Project", owner_id="owner"
    )


@pytest.fixture()
def document(db_session, project):
    return services.create_document(
        db_session,
        project.id,
        filename="business-case.pdf",
        doc_type="Business Case",
        created_by_id="owner",
    )
