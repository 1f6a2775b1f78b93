from __future__ import annotations

from urllib.parse import parse_qs, urlparse

import pytest

from casa.database import RecordInvalid, RecordNotFound
from casa.invitations import InvitationDispatcher, token_digest
from casa.models import Role


PASSWORD = "a-brand-new-password"


def _token_from(message) -> str:
    url = next(line for line in message.body.splitlines() if "invitation_token=" in line)
    return parse_qs(urlparse(url.strip()).query)["invitation_token"][0]


@pytest.fixture()
def invitations(database, mailer) -> InvitationDispatcher:
    return InvitationDispatcher(database, mailer)


def test_invite_stores_only_the_digest(database, invitations, transport, make_user) -> None:
    user = make_user(password=None)

    result = invitations.invite(user)

    assert result.delivered is True
    token = _token_from(transport.deliveries[-1])
    assert database.get_user_by_invitation_digest(token) is None
    assert database.get_user_by_invitation_digest(token_digest(token)).id == user.id


def test_reinviting_replaces_the_previous_token(invitations, transport, make_user) -> None:
    user = make_user(password=None)
    invitations.invite(user)
    first = _token_from(transport.deliveries[-1])

    invitations.invite(user)
    second = _token_from(transport.deliveries[-1])

    assert first != second
    with pytest.raises(RecordNotFound):
        invitations.find_invited_user(first)
    assert invitations.find_invited_user(second).id == user.id


def test_accept_rejects_short_and_mismatched_passwords(invitations, transport, make_user) -> None:
    invitations.invite(make_user(password=None))
    token = _token_from(transport.deliveries[-1])

    with pytest.raises(RecordInvalid) as excinfo:
        invitations.accept(token, "short", "different")

    assert excinfo.value.messages == [
        "Password is too short (minimum is 12 characters)",
        "Password confirmation doesn't match Password",
    ]


def test_unknown_token_is_rejected(invitations) -> None:
    with pytest.raises(RecordNotFound) as excinfo:
        invitations.accept("nope", PASSWORD, PASSWORD)

    assert str(excinfo.value.args[0]) == "The invitation token provided is not valid!"


def test_invited_admin_sets_password_and_is_signed_in(client, database, sign_in_as_admin, transport) -> None:
    sign_in_as_admin()
    client.post(
        "/casa_admins",
        data={"casa_admin[email]": "invitee@casa.com", "casa_admin[display_name]": "Invitee"},
    )
    token = _token_from(transport.deliveries[-1])
    client.get("/users/sign_out")

    form = client.get("/users/invitation/accept", params={"invitation_token": token})
    assert form.status_code == 200
    assert "invitee@casa.com" in form.text

    response = client.post(
        "/users/invitation",
        data={"invitation_token": token, "password": PASSWORD, "password_confirmation": PASSWORD},
        follow_redirects=False,
    )

    assert response.status_code == 303
    assert response.headers["location"] == "http://testserver/"
    dashboard = client.get("/")
    assert "Welcome, Invitee." in dashboard.text

    invitee = database.get_user_by_email("invitee@casa.com")
    assert invitee.role is Role.CASA_ADMIN
    assert invitee.invitation_accepted_at is not None
    assert database.authenticate_user("invitee@casa.com", PASSWORD) is not None


def test_acceptance_form_rerenders_with_errors(client, invitations, transport, make_user) -> None:
    invitations.invite(make_user(password=None))
    token = _token_from(transport.deliveries[-1])

    response = client.post(
        "/users/invitation",
        data={"invitation_token": token, "password": "short", "password_confirmation": "short"},
    )

    assert response.status_code == 200
    assert "Password is too short (minimum is 12 characters)" in response.text


def test_acceptance_page_with_invalid_token_redirects(client) -> None:
    response = client.get("/users/invitation/accept", params={"invitation_token": "bogus"}, follow_redirects=False)

    assert response.status_code == 303
    assert response.headers["location"].endswith("/users/sign_in")
    page = client.get(response.headers["location"])
    assert "The invitation token provided is not valid!" in page.text
