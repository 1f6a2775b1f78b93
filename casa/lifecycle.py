"""Activation and deactivation of admin accounts."""
from __future__ import annotations

import logging
from dataclasses import dataclass

from .database import Database, RecordNotFound
from .mailers import DeliveryResult, Mailer
from .models import User


logger = logging.getLogger("casa.lifecycle")


@dataclass(frozen=True)
class TransitionOutcome:
    casa_admin: User
    delivery: DeliveryResult

    @property
    def email_sent(self) -> bool:
        return self.delivery.delivered


class AdminLifecycle:
    """Toggles the active flag and sends the matching notification.

    The flag is persisted before the email is attempted; a delivery failure is
    reported on the outcome and never rolls the change back. Validation
    failures of the stored record raise :class:`~casa.database.RecordInvalid`
    and send nothing.
    """

    def __init__(self, database: Database, mailer: Mailer) -> None:
        self._database = database
        self._mailer = mailer

    def activate(self, casa_admin: User) -> TransitionOutcome:
        return self._transition(casa_admin, active=True)

    def deactivate(self, casa_admin: User) -> TransitionOutcome:
        return self._transition(casa_admin, active=False)

    def _transition(self, casa_admin: User, *, active: bool) -> TransitionOutcome:
        updated = self._database.set_user_active(casa_admin.id, active)
        logger.info(
            "Admin %s %s",
            updated.id,
            "activated" if active else "deactivated",
        )

        organisation = self._database.get_org(updated.casa_org_id)
        if organisation is None:
            raise RecordNotFound(f"Organisation {updated.casa_org_id} not found")

        if active:
            message = self._mailer.account_setup(updated, organisation)
        else:
            message = self._mailer.deactivation(updated, organisation)

        return TransitionOutcome(casa_admin=updated, delivery=self._mailer.deliver(message))


__all__ = ["AdminLifecycle", "TransitionOutcome"]
