from __future__ import annotations

import pytest

from casa.authorization import ALLOW, Action, Denial, authorize
from casa.models import Role


@pytest.mark.parametrize("action", list(Action))
def test_casa_admin_may_perform_every_action(make_user, action) -> None:
    assert authorize(make_user(Role.CASA_ADMIN), action) is ALLOW


@pytest.mark.parametrize("role", [Role.SUPERVISOR, Role.VOLUNTEER])
def test_other_roles_are_sent_to_root(make_user, role) -> None:
    decision = authorize(make_user(role), Action.UPDATE)

    assert decision.allowed is False
    assert decision.denial is Denial.FORBIDDEN
    assert decision.redirect_to == "root"
    assert decision.notice == "Sorry, you are not authorized to perform this action."


def test_anonymous_request_is_sent_to_sign_in() -> None:
    decision = authorize(None, Action.EDIT)

    assert decision.allowed is False
    assert decision.denial is Denial.UNAUTHENTICATED
    assert decision.redirect_to == "new_user_session"
    assert decision.notice is None
