import os

# Settings are read at import time
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["JWT_SECRET"] = "test-secret"
os.environ["ENVIRONMENT"] = "development"

import uuid
from datetime import date, datetime, timezone

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

import khojpayo.models  # noqa: F401
from khojpayo.db.db import get_session
from khojpayo.main import app
from khojpayo.models.item import Item
from khojpayo.models.organization import Organization, OrganizationMember
from khojpayo.models.user import Profile
from khojpayo.utils import s3_service
from khojpayo.utils.auth_helper import create_access_token, hash_password


class FakeS3:
    def __init__(self):
        self.uploaded = {}
        self.deleted = []

    def upload_fileobj(self, fileobj, bucket, key):
        self.uploaded[key] = fileobj.read()

    def generate_presigned_url(self, operation, Params, ExpiresIn):
        return f"https://signed.example.com/{Params['Key']}?expires={ExpiresIn}"

    def delete_object(self, Bucket, Key):
        self.deleted.append(Key)


@pytest.fixture(name="session")
def session_fixture():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    with Session(engine) as session:
        yield session


@pytest.fixture(name="client")
def client_fixture(session):
    app.dependency_overrides[get_session] = lambda: session
    client = TestClient(app)
    yield client
    app.dependency_overrides.clear()


@pytest.fixture
def fake_s3(monkeypatch):
    fake = FakeS3()
    monkeypatch.setattr(s3_service, "get_s3_client", lambda: fake)
    return fake


@pytest.fixture
def make_user(session):
    def _make(name="Sita", email=None, role="individual", password=None, is_verified=False, phone=None):
        profile = Profile(
            email=email or f"{uuid.uuid4().hex[:10]}@example.com",
            name=name,
            role=role,
            phone=phone,
            is_verified=is_verified,
            password_hash=hash_password(password) if password else None,
        )
        session.add(profile)
        session.commit()
        session.refresh(profile)
        return profile

    return _make


@pytest.fixture
def auth():
    def _headers(profile):
        return {"Authorization": f"Bearer {create_access_token(profile)}"}

    return _headers


@pytest.fixture
def make_item(session):
    def _make(owner, **overrides):
        fields = {
            "user_id": owner.id,
            "type": "found",
            "title": "Black leather wallet",
            "description": "Found near the Ratnapark bus stop in the evening",
            "category": "keys-wallets",
            "date_lost_found": date(2024, 5, 1),
            "contact_phone": "9800000000",
            "contact_email": "finder@example.com",
        }
        fields.update(overrides)

        item = Item(**fields)
        item.set_location({"province": "Bagmati", "district": "Kathmandu"})

        session.add(item)
        session.commit()
        session.refresh(item)
        return item

    return _make


@pytest.fixture
def make_org(session):
    def _make(owner, status="approved", **overrides):
        fields = {
            "name": "Kathmandu Metropolitan Police",
            "type": "police",
            "contact_email": "info@police.gov.np",
            "contact_phone": "014200000",
            "address": "Ranipokhari",
            "location": {"province": "Bagmati", "district": "Kathmandu"},
            "admin_id": owner.id,
            "verification_status": status,
            "is_verified": status == "approved",
            "can_post_items": status == "approved",
            "can_manage_claims": status == "approved",
        }
        fields.update(overrides)

        org = Organization(**fields)
        session.add(org)
        session.add(OrganizationMember(
            organization_id=org.id,
            user_id=owner.id,
            role="admin",
            member_role="org_owner",
            accepted_at=datetime.now(timezone.utc),
        ))
        session.commit()
        session.refresh(org)
        return org

    return _make


@pytest.fixture
def add_member(session):
    def _add(org, user, member_role="org_staff"):
        member = OrganizationMember(
            organization_id=org.id,
            user_id=user.id,
            member_role=member_role,
        )
        session.add(member)
        session.commit()
        session.refresh(member)
        return member

    return _add
