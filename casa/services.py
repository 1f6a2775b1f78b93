"""Create and update operations for admin accounts."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from pydantic import BaseModel, ConfigDict

from .database import Database, RecordInvalid
from .invitations import InvitationDispatcher
from .mailers import DeliveryResult
from .models import CasaOrg, Role, User


logger = logging.getLogger("casa.services")


class CasaAdminParams(BaseModel):
    """Permitted ``casa_admin`` attributes; unknown keys are dropped."""

    model_config = ConfigDict(extra="ignore")

    email: Optional[str] = None
    display_name: Optional[str] = None

    def changes(self) -> dict:
        return self.model_dump(exclude_unset=True)


@dataclass(frozen=True)
class CreatedAdmin:
    casa_admin: User
    invitation: DeliveryResult


class CreateCasaAdminService:
    """Builds a new admin for an organisation and invites them once saved."""

    def __init__(
        self,
        database: Database,
        invitations: InvitationDispatcher,
        organisation: CasaOrg,
        params: CasaAdminParams,
    ) -> None:
        self._database = database
        self._invitations = invitations
        self._organisation = organisation
        self.params = params
        self.casa_admin: Optional[User] = None

    def create(self) -> CreatedAdmin:
        """Persist the admin, raising :class:`RecordInvalid` when validation fails."""

        casa_admin = self._database.create_user(
            self._organisation.id,
            email=self.params.email,
            display_name=self.params.display_name,
            role=Role.CASA_ADMIN,
        )
        self.casa_admin = casa_admin
        logger.info("Created admin %s for organisation %s", casa_admin.id, self._organisation.id)

        invitation = self._invitations.invite(casa_admin)
        refreshed = self._database.get_user(casa_admin.id) or casa_admin
        self.casa_admin = refreshed
        return CreatedAdmin(casa_admin=refreshed, invitation=invitation)


def update_casa_admin(database: Database, casa_admin: User, params: CasaAdminParams) -> User:
    """Apply the supplied attributes; omitted attributes are left unchanged."""

    changes = params.changes()
    try:
        updated = database.update_user(casa_admin.id, **changes)
    except RecordInvalid as exc:
        logger.info("Rejected update of admin %s: %s", casa_admin.id, exc)
        raise
    logger.info("Updated admin %s (%s)", updated.id, ", ".join(sorted(changes)) or "no changes")
    return updated


__all__ = [
    "CasaAdminParams",
    "CreateCasaAdminService",
    "CreatedAdmin",
    "update_casa_admin",
]
