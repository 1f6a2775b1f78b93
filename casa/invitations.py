"""Invitation tokens: issuing them by email and accepting them."""
from __future__ import annotations

import hashlib
import logging
import secrets
from datetime import datetime, timezone
from typing import List, Tuple

from .database import Database, RecordInvalid, RecordNotFound
from .i18n import translate
from .mailers import DeliveryResult, Mailer
from .models import User


PASSWORD_MIN_LENGTH = 12

logger = logging.getLogger("casa.invitations")


def token_digest(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def generate_invitation_token() -> Tuple[str, str]:
    """Return ``(token, digest)``; only the digest is ever stored."""

    token = secrets.token_urlsafe(32)
    return token, token_digest(token)


class InvitationDispatcher:
    """Issues invitation emails and consumes accepted invitations."""

    def __init__(self, database: Database, mailer: Mailer) -> None:
        self._database = database
        self._mailer = mailer

    def invite(self, user: User) -> DeliveryResult:
        """Issue a fresh invitation for ``user`` and email it.

        Any earlier token stops working. ``invitation_created_at`` is stamped
        before delivery, so a failed send still leaves the new token in place.
        """

        token, digest = generate_invitation_token()
        issued_at = datetime.now(timezone.utc)
        invited = self._database.store_invitation(user.id, digest, issued_at=issued_at)

        organisation = self._database.get_org(invited.casa_org_id)
        if organisation is None:
            raise RecordNotFound(f"Organisation {invited.casa_org_id} not found")

        message = self._mailer.invitation_instructions(invited, organisation, token)
        result = self._mailer.deliver(message)
        logger.info(
            "Issued invitation for user %s (delivered=%s)",
            invited.id,
            result.delivered,
        )
        return result

    def find_invited_user(self, token: str) -> User:
        user = self._database.get_user_by_invitation_digest(token_digest(token)) if token else None
        if user is None:
            raise RecordNotFound(translate("invitations.invalid_token"))
        return user

    def accept(self, token: str, password: str, password_confirmation: str) -> User:
        """Set the invited user's password, raising on an unknown token or a bad password."""

        self.find_invited_user(token)

        errors: List[str] = []
        if len(password) < PASSWORD_MIN_LENGTH:
            errors.append(translate("invitations.password_too_short", minimum=PASSWORD_MIN_LENGTH))
        if password != password_confirmation:
            errors.append(translate("invitations.password_mismatch"))
        if errors:
            raise RecordInvalid(errors)

        user = self._database.accept_invitation(token_digest(token), password)
        logger.info("User %s accepted their invitation", user.id)
        return user


__all__ = [
    "InvitationDispatcher",
    "PASSWORD_MIN_LENGTH",
    "generate_invitation_token",
    "token_digest",
]
