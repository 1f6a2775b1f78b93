"""Domain models for the CASA admin portal."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional


class Role(str, Enum):
    """Roles a signed-in user may hold."""

    CASA_ADMIN = "casa_admin"
    SUPERVISOR = "supervisor"
    VOLUNTEER = "volunteer"


@dataclass(frozen=True)
class CasaOrg:
    """An organisation that owns users and their records."""

    id: int
    name: str
    created_at: datetime


@dataclass(frozen=True)
class User:
    """Represents a user account stored in the portal database."""

    id: int
    casa_org_id: int
    email: str
    display_name: str
    role: Role
    active: bool
    created_at: datetime
    invitation_created_at: Optional[datetime] = None
    invitation_sent_at: Optional[datetime] = None
    invitation_accepted_at: Optional[datetime] = None

    @property
    def is_casa_admin(self) -> bool:
        return self.role is Role.CASA_ADMIN


__all__ = ["CasaOrg", "Role", "User"]
