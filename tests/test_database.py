from __future__ import annotations

from datetime import datetime, timezone

import pytest

from casa.database import Database, RecordInvalid, RecordNotFound
from casa.models import Role


def test_create_and_authenticate_user(database: Database, organisation) -> None:
    user = database.create_user(
        organisation.id,
        email="  Owner@Example.com ",
        display_name="Owner",
        role=Role.CASA_ADMIN,
        password="Sup3rSecurePwd!",
    )

    assert user.email == "owner@example.com"
    assert user.is_casa_admin
    retrieved = database.authenticate_user("OWNER@example.com", "Sup3rSecurePwd!")
    assert retrieved is not None
    assert retrieved.id == user.id

    assert database.authenticate_user("owner@example.com", "wrong password") is None


def test_user_without_password_cannot_authenticate(database: Database, organisation) -> None:
    database.create_user(organisation.id, email="invited@example.com", display_name="Invited", role=Role.CASA_ADMIN)

    assert database.authenticate_user("invited@example.com", "") is None


def test_inactive_user_cannot_authenticate(database: Database, make_user) -> None:
    user = make_user(active=False)

    assert database.authenticate_user(user.email, "super-secret-password") is None


def test_create_user_collects_validation_messages(database: Database, organisation) -> None:
    with pytest.raises(RecordInvalid) as excinfo:
        database.create_user(organisation.id, email="", display_name="  ", role=Role.CASA_ADMIN)

    assert excinfo.value.messages == ["Email can't be blank", "Display name can't be blank"]


def test_create_user_rejects_malformed_email(database: Database, organisation) -> None:
    with pytest.raises(RecordInvalid) as excinfo:
        database.create_user(organisation.id, email="not-an-email", display_name="Someone", role=Role.VOLUNTEER)

    assert excinfo.value.messages == ["Email is invalid"]


def test_email_is_unique_across_organisations(database: Database, make_user) -> None:
    existing = make_user()
    other_org = database.create_org("Another CASA")

    with pytest.raises(RecordInvalid) as excinfo:
        database.create_user(other_org.id, email=existing.email, display_name="Copy", role=Role.CASA_ADMIN)

    assert excinfo.value.messages == ["Email has already been taken"]


def test_update_user_only_changes_supplied_fields(database: Database, make_user) -> None:
    user = make_user(email="before@example.com", display_name="Before")

    updated = database.update_user(user.id, display_name="After")

    assert updated.display_name == "After"
    assert updated.email == "before@example.com"


def test_update_user_validation_failure_leaves_record_untouched(database: Database, make_user) -> None:
    user = make_user(email="keep@example.com")

    with pytest.raises(RecordInvalid):
        database.update_user(user.id, email="")

    assert database.get_user(user.id).email == "keep@example.com"


def test_update_user_may_keep_its_own_email(database: Database, make_user) -> None:
    user = make_user(email="same@example.com")

    updated = database.update_user(user.id, email="SAME@example.com", display_name="Renamed")

    assert updated.email == "same@example.com"


def test_set_user_active_round_trip(database: Database, make_user) -> None:
    user = make_user()

    assert database.set_user_active(user.id, False).active is False
    assert database.set_user_active(user.id, True).active is True


def test_set_user_active_unknown_user(database: Database) -> None:
    with pytest.raises(RecordNotFound):
        database.set_user_active(999, True)


def test_get_org_user_is_scoped_to_organisation_and_role(database: Database, make_user) -> None:
    admin = make_user(Role.CASA_ADMIN)
    volunteer = make_user(Role.VOLUNTEER)
    other_org = database.create_org("Another CASA")

    assert database.get_org_user(admin.casa_org_id, admin.id, role=Role.CASA_ADMIN) == admin
    with pytest.raises(RecordNotFound):
        database.get_org_user(other_org.id, admin.id)
    with pytest.raises(RecordNotFound):
        database.get_org_user(volunteer.casa_org_id, volunteer.id, role=Role.CASA_ADMIN)


def test_list_and_count_users_by_role(database: Database, organisation, make_user) -> None:
    make_user(Role.CASA_ADMIN, display_name="Zed")
    make_user(Role.CASA_ADMIN, display_name="amy")
    make_user(Role.SUPERVISOR)

    admins = database.list_users(organisation.id, role=Role.CASA_ADMIN)

    assert [user.display_name for user in admins] == ["amy", "Zed"]
    assert database.count_users(role=Role.CASA_ADMIN) == 2
    assert database.count_users() == 3


def test_invitation_token_is_consumed_on_acceptance(database: Database, make_user) -> None:
    user = make_user(password=None)
    issued_at = datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)

    invited = database.store_invitation(user.id, "digest-1", issued_at=issued_at)
    assert invited.invitation_created_at == issued_at
    assert database.get_user_by_invitation_digest("digest-1").id == user.id

    accepted = database.accept_invitation("digest-1", "a-long-enough-password")

    assert accepted.invitation_accepted_at is not None
    assert database.get_user_by_invitation_digest("digest-1") is None
    assert database.authenticate_user(user.email, "a-long-enough-password") is not None
    with pytest.raises(RecordNotFound):
        database.accept_invitation("digest-1", "a-long-enough-password")


def test_find_or_create_org_reuses_existing(database: Database, organisation) -> None:
    assert database.find_or_create_org(organisation.name).id == organisation.id
    assert database.find_or_create_org("Brand New CASA").id != organisation.id


def test_org_name_must_not_be_empty(database: Database) -> None:
    with pytest.raises(ValueError):
        database.create_org("   ")
