"""Content negotiation and rendering of admin-account outcomes."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from fastapi import Request, status
from fastapi.responses import JSONResponse as _JSONResponse
from fastapi.responses import RedirectResponse, Response
from fastapi.templating import Jinja2Templates
from pydantic import BaseModel

from .authorization import Decision, Denial
from .i18n import translate
from .models import User


JSON_MEDIA_TYPE = "application/json; charset=utf-8"


class JSONResponse(_JSONResponse):
    media_type = JSON_MEDIA_TYPE


class CasaAdminView(BaseModel):
    id: int
    email: str
    display_name: str
    active: bool
    invitation_created_at: Optional[datetime] = None
    created_at: datetime

    @classmethod
    def from_user(cls, user: User) -> "CasaAdminView":
        return cls(
            id=user.id,
            email=user.email,
            display_name=user.display_name,
            active=user.active,
            invitation_created_at=user.invitation_created_at,
            created_at=user.created_at,
        )


def wants_json(request: Request) -> bool:
    """Return ``True`` when the client asked for a JSON response."""

    if request.query_params.get("format", "").lower() == "json":
        return True
    accept = request.headers.get("accept", "")
    for part in accept.split(","):
        media = part.split(";", 1)[0].strip().lower()
        if media in {"text/html", "application/xhtml+xml"}:
            return False
        if media == "application/json":
            return True
    return False


def flash(request: Request, message: str, *, category: str = "notice") -> None:
    messages = request.session.get("flash_messages")
    if not isinstance(messages, list):
        messages = []
    messages.append({"message": message, "category": category})
    request.session["flash_messages"] = messages


def consume_flash(request: Request) -> List[Dict[str, str]]:
    messages = request.session.pop("flash_messages", [])
    if isinstance(messages, list):
        return messages
    return []


def redirect(request: Request, route_name: str, **path_params: Any) -> RedirectResponse:
    return RedirectResponse(
        request.url_for(route_name, **path_params),
        status_code=status.HTTP_303_SEE_OTHER,
    )


class OutcomeKind(str, Enum):
    SUCCESS = "success"
    INVALID = "invalid"


@dataclass
class Outcome:
    """Format-independent result of an admin-account operation.

    Successful outcomes redirect (HTML) or serialize ``casa_admin`` (JSON).
    Invalid outcomes re-render ``template`` (HTML) or list ``errors`` (JSON).
    """

    kind: OutcomeKind
    casa_admin: Optional[User] = None
    json_status: int = status.HTTP_200_OK
    redirect_to: Optional[str] = None
    redirect_params: Dict[str, Any] = field(default_factory=dict)
    notice: Optional[str] = None
    alert: Optional[str] = None
    errors: List[str] = field(default_factory=list)
    template: Optional[str] = None
    context: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def success(
        cls,
        casa_admin: User,
        *,
        redirect_to: str,
        notice: Optional[str] = None,
        alert: Optional[str] = None,
        json_status: int = status.HTTP_200_OK,
        **redirect_params: Any,
    ) -> "Outcome":
        return cls(
            kind=OutcomeKind.SUCCESS,
            casa_admin=casa_admin,
            json_status=json_status,
            redirect_to=redirect_to,
            redirect_params=redirect_params,
            notice=notice,
            alert=alert,
        )

    @classmethod
    def invalid(cls, errors: List[str], *, template: str, **context: Any) -> "Outcome":
        return cls(kind=OutcomeKind.INVALID, errors=list(errors), template=template, context=context)


class ResponseFormatter:
    """Turns an :class:`Outcome` or a denied :class:`Decision` into a response."""

    def __init__(self, templates: Jinja2Templates) -> None:
        self._templates = templates

    def render(self, request: Request, outcome: Outcome) -> Response:
        if outcome.kind is OutcomeKind.SUCCESS:
            return self._render_success(request, outcome)
        return self._render_invalid(request, outcome)

    def _render_success(self, request: Request, outcome: Outcome) -> Response:
        if wants_json(request):
            payload = CasaAdminView.from_user(outcome.casa_admin).model_dump(mode="json")
            return JSONResponse(status_code=outcome.json_status, content=payload)

        if outcome.notice:
            flash(request, outcome.notice, category="notice")
        if outcome.alert:
            flash(request, outcome.alert, category="alert")
        return redirect(request, outcome.redirect_to, **outcome.redirect_params)

    def _render_invalid(self, request: Request, outcome: Outcome) -> Response:
        if wants_json(request):
            return JSONResponse(
                status_code=422,
                content={"errors": outcome.errors},
            )

        return self.page(
            request,
            outcome.template,
            {**outcome.context, "errors": outcome.errors},
        )

    def page(self, request: Request, template: str, context: Dict[str, Any]) -> Response:
        """Render an HTML page, handing pending flash messages to the layout."""

        return self._templates.TemplateResponse(
            request,
            template,
            {
                "messages": consume_flash(request),
                "current_user": getattr(request.state, "user", None),
                **context,
            },
        )

    def deny(self, request: Request, decision: Decision) -> Response:
        if wants_json(request):
            if decision.denial is Denial.UNAUTHENTICATED:
                return JSONResponse(
                    status_code=status.HTTP_401_UNAUTHORIZED,
                    content={"error": translate("authorization.sign_in_required")},
                )
            return JSONResponse(
                status_code=status.HTTP_403_FORBIDDEN,
                content={"error": decision.notice},
            )

        if decision.notice:
            flash(request, decision.notice, category="notice")
        return redirect(request, decision.redirect_to)


__all__ = [
    "CasaAdminView",
    "JSON_MEDIA_TYPE",
    "JSONResponse",
    "Outcome",
    "OutcomeKind",
    "ResponseFormatter",
    "consume_flash",
    "flash",
    "redirect",
    "wants_json",
]
