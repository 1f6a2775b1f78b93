from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import Callable, Iterator

import pytest
from fastapi.testclient import TestClient

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

os.environ.setdefault("CASA_SESSION_SECRET", "tests-secret-key")

from casa.config import MailSettings, Settings
from casa.database import Database
from casa.mailers import Mailer, MemoryTransport
from casa.models import CasaOrg, Role, User
from casa.web import create_app


PASSWORD = "super-secret-password"


@pytest.fixture()
def database(tmp_path: Path) -> Database:
    db = Database(tmp_path / "casa.sqlite3")
    db.initialize()
    return db


@pytest.fixture()
def organisation(database: Database) -> CasaOrg:
    return database.create_org("CASA of Prince George's County")


@pytest.fixture()
def transport() -> MemoryTransport:
    return MemoryTransport()


@pytest.fixture()
def mailer(transport: MemoryTransport) -> Mailer:
    return Mailer(transport, from_address="casa@example.com", base_url="http://testserver")


@pytest.fixture()
def settings(tmp_path: Path) -> Settings:
    return Settings(
        database_path=tmp_path / "casa.sqlite3",
        session_secret="tests-secret",
        base_url="http://testserver",
        mail=MailSettings(delivery_method="memory"),
    )


@pytest.fixture()
def app(database: Database, mailer: Mailer, settings: Settings):
    return create_app(database=database, mailer=mailer, settings=settings)


@pytest.fixture()
def client(app) -> Iterator[TestClient]:
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture()
def make_user(database: Database, organisation: CasaOrg) -> Callable[..., User]:
    counter = {"value": 0}

    def factory(
        role: Role = Role.CASA_ADMIN,
        *,
        email: str | None = None,
        display_name: str | None = None,
        active: bool = True,
        password: str | None = PASSWORD,
        casa_org_id: int | None = None,
    ) -> User:
        counter["value"] += 1
        number = counter["value"]
        return database.create_user(
            casa_org_id or organisation.id,
            email=email or f"{role.value}{number}@example.com",
            display_name=display_name or f"{role.value.replace('_', ' ').title()} {number}",
            role=role,
            password=password,
            active=active,
        )

    return factory


def sign_in(client: TestClient, user: User, password: str = PASSWORD) -> None:
    response = client.post(
        "/users/sign_in",
        data={"email": user.email, "password": password},
        follow_redirects=False,
    )
    assert response.status_code == 303
    assert response.headers["location"].endswith("/")


@pytest.fixture()
def sign_in_as_admin(client: TestClient, make_user) -> Callable[[], User]:
    def _sign_in() -> User:
        admin = make_user(Role.CASA_ADMIN)
        sign_in(client, admin)
        return admin

    return _sign_in


@pytest.fixture()
def sign_in_as_volunteer(client: TestClient, make_user) -> Callable[[], User]:
    def _sign_in() -> User:
        volunteer = make_user(Role.VOLUNTEER)
        sign_in(client, volunteer)
        return volunteer

    return _sign_in
