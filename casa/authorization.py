"""Role-based access policy for admin account management."""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, FrozenSet, Optional

from .i18n import translate
from .models import Role, User


class Action(str, Enum):
    INDEX = "index"
    NEW = "new"
    CREATE = "create"
    EDIT = "edit"
    UPDATE = "update"
    ACTIVATE = "activate"
    DEACTIVATE = "deactivate"
    RESEND_INVITATION = "resend_invitation"


class Denial(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    FORBIDDEN = "forbidden"


@dataclass(frozen=True)
class Decision:
    """Result of an authorization check.

    ``redirect_to`` is a route name; ``notice`` is the flash text shown after
    the redirect (``None`` when nothing is flashed).
    """

    allowed: bool
    denial: Optional[Denial] = None
    redirect_to: Optional[str] = None
    notice: Optional[str] = None


ALLOW = Decision(allowed=True)

_CASA_ADMIN_POLICY: Dict[Action, FrozenSet[Role]] = {
    action: frozenset({Role.CASA_ADMIN}) for action in Action
}


def authorize(user: Optional[User], action: Action) -> Decision:
    """Map the acting user and requested action onto allow/deny."""

    if user is None:
        return Decision(
            allowed=False,
            denial=Denial.UNAUTHENTICATED,
            redirect_to="new_user_session",
        )

    if user.role in _CASA_ADMIN_POLICY[action]:
        return ALLOW

    return Decision(
        allowed=False,
        denial=Denial.FORBIDDEN,
        redirect_to="root",
        notice=translate("authorization.not_authorized"),
    )


__all__ = ["ALLOW", "Action", "Decision", "Denial", "authorize"]
