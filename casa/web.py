"""Browser and JSON interface for managing CASA admin accounts."""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, Optional, Tuple

from fastapi import FastAPI, Form, HTTPException, Request, status
from fastapi.exception_handlers import http_exception_handler
from fastapi.responses import Response
from fastapi.templating import Jinja2Templates
from starlette.middleware.sessions import SessionMiddleware

from .authorization import Action, authorize
from .config import Settings, load_settings
from .database import Database, RecordInvalid, RecordNotFound
from .i18n import translate
from .invitations import PASSWORD_MIN_LENGTH, InvitationDispatcher
from .lifecycle import AdminLifecycle
from .mailers import Mailer
from .models import Role, User
from .responses import JSONResponse, Outcome, ResponseFormatter, flash, redirect, wants_json
from .services import CasaAdminParams, CreateCasaAdminService, update_casa_admin


TEMPLATE_DIR = Path(__file__).resolve().parent / "templates"

SESSION_COOKIE_NAME = "casa_session"

logger = logging.getLogger("casa.web")


async def _read_casa_admin_params(request: Request) -> CasaAdminParams:
    """Extract ``casa_admin`` attributes from a JSON body or a form post."""

    content_type = request.headers.get("content-type", "")
    raw: Dict[str, object] = {}
    if content_type.startswith("application/json"):
        try:
            payload = await request.json()
        except ValueError:
            payload = {}
        if isinstance(payload, dict):
            nested = payload.get("casa_admin", payload)
            if isinstance(nested, dict):
                raw = nested
    else:
        form = await request.form()
        for key, value in form.items():
            if key.startswith("casa_admin[") and key.endswith("]"):
                raw[key[len("casa_admin[") : -1]] = value

    cleaned = {
        key: (None if value is None else str(value))
        for key, value in raw.items()
        if key in CasaAdminParams.model_fields
    }
    return CasaAdminParams(**cleaned)


def create_app(
    *,
    database: Optional[Database] = None,
    settings: Optional[Settings] = None,
    mailer: Optional[Mailer] = None,
    session_secret: Optional[str] = None,
    initialize_database: bool = False,
) -> FastAPI:
    """Create the admin portal web application."""

    if settings is None:
        settings = load_settings()

    if database is None:
        database = Database(settings.database_path)
        database.initialize()
    elif initialize_database:
        database.initialize()

    if session_secret is None:
        session_secret = settings.session_secret
    if not session_secret:
        raise RuntimeError("CASA_SESSION_SECRET must be configured to use the admin portal")

    if mailer is None:
        mailer = Mailer.from_settings(settings.mail, base_url=settings.base_url)

    app = FastAPI(
        title="CASA Admin Portal",
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.state.database = database
    app.state.mailer = mailer
    app.state.settings = settings

    if not settings.secure_cookies:
        logger.warning(
            "Session cookies are not marked as secure. Only disable secure cookies for"
            " local development."
        )

    app.add_middleware(
        SessionMiddleware,
        secret_key=session_secret,
        session_cookie=SESSION_COOKIE_NAME,
        https_only=settings.secure_cookies,
        same_site="lax",
        max_age=60 * 60 * 8,
    )

    templates = Jinja2Templates(directory=str(TEMPLATE_DIR))
    formatter = ResponseFormatter(templates)
    invitations = InvitationDispatcher(database, mailer)
    lifecycle = AdminLifecycle(database, mailer)

    def _get_current_user(request: Request) -> Optional[User]:
        user_id = request.session.get("user_id")
        if not user_id:
            return None
        try:
            user = database.get_user(int(user_id))
        except (TypeError, ValueError):
            user = None
        if user is None or not user.active:
            request.session.pop("user_id", None)
            return None
        request.state.user = user
        return user

    def _guard(request: Request, action: Action) -> Tuple[Optional[User], Optional[Response]]:
        user = _get_current_user(request)
        decision = authorize(user, action)
        if decision.allowed:
            return user, None
        logger.info(
            "Denied %s on casa_admins for %s (%s)",
            action.value,
            f"user {user.id}" if user else "anonymous request",
            decision.denial.value,
        )
        return user, formatter.deny(request, decision)

    def _load_casa_admin(current_user: User, admin_id: str) -> User:
        # Ids are parsed only after the guard has run.
        try:
            record_id = int(admin_id)
        except ValueError:
            raise RecordNotFound(f"User {admin_id!r} not found") from None
        return database.get_org_user(current_user.casa_org_id, record_id, role=Role.CASA_ADMIN)

    @app.exception_handler(RecordNotFound)
    async def handle_record_not_found(request: Request, exc: RecordNotFound) -> Response:
        logger.info("Record lookup failed for %s: %s", request.url.path, exc)
        message = translate("casa_admins.not_found")
        if wants_json(request):
            return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"error": message})
        return await http_exception_handler(
            request,
            HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=message),
        )

    @app.get("/healthz")
    async def healthcheck() -> Dict[str, str]:
        return {"status": "ok"}

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------
    @app.get("/", name="root")
    async def root(request: Request):
        user = _get_current_user(request)
        if user is None:
            return redirect(request, "new_user_session")
        organisation = database.get_org(user.casa_org_id)
        return formatter.page(
            request,
            "dashboard.html",
            {"user": user, "organisation": organisation},
        )

    @app.get("/users/sign_in", name="new_user_session")
    async def sign_in_form(request: Request):
        if _get_current_user(request) is not None:
            return redirect(request, "root")
        return formatter.page(request, "users/sign_in.html", {})

    @app.post("/users/sign_in", name="user_session")
    async def sign_in(request: Request, email: str = Form(...), password: str = Form(...)):
        user = database.authenticate_user(email, password)
        if user is None:
            flash(request, translate("sessions.invalid"), category="alert")
            return redirect(request, "new_user_session")

        request.session.clear()
        request.session["user_id"] = user.id
        flash(request, translate("sessions.signed_in"))
        logger.info("User %s signed in", user.id)
        return redirect(request, "root")

    @app.api_route("/users/sign_out", methods=["GET", "POST", "DELETE"], name="destroy_user_session")
    async def sign_out(request: Request):
        request.session.clear()
        flash(request, translate("sessions.signed_out"))
        return redirect(request, "new_user_session")

    # ------------------------------------------------------------------
    # Invitations
    # ------------------------------------------------------------------
    @app.get("/users/invitation/accept", name="accept_user_invitation")
    async def accept_invitation_form(request: Request, invitation_token: str = ""):
        try:
            invited = invitations.find_invited_user(invitation_token)
        except RecordNotFound as exc:
            flash(request, str(exc.args[0]), category="alert")
            return redirect(request, "new_user_session")

        return formatter.page(
            request,
            "users/accept_invitation.html",
            {
                "invited": invited,
                "invitation_token": invitation_token,
                "password_min_length": PASSWORD_MIN_LENGTH,
                "errors": [],
            },
        )

    @app.post("/users/invitation", name="user_invitation")
    async def accept_invitation(
        request: Request,
        invitation_token: str = Form(""),
        password: str = Form(""),
        password_confirmation: str = Form(""),
    ):
        try:
            user = invitations.accept(invitation_token, password, password_confirmation)
        except RecordNotFound as exc:
            flash(request, str(exc.args[0]), category="alert")
            return redirect(request, "new_user_session")
        except RecordInvalid as exc:
            invited = invitations.find_invited_user(invitation_token)
            return formatter.page(
                request,
                "users/accept_invitation.html",
                {
                    "invited": invited,
                    "invitation_token": invitation_token,
                    "password_min_length": PASSWORD_MIN_LENGTH,
                    "errors": exc.messages,
                },
            )

        request.session.clear()
        request.session["user_id"] = user.id
        flash(request, translate("invitations.accepted"))
        return redirect(request, "root")

    # ------------------------------------------------------------------
    # Admin accounts
    # ------------------------------------------------------------------
    @app.get("/casa_admins", name="casa_admins")
    async def list_casa_admins(request: Request):
        user, denied = _guard(request, Action.INDEX)
        if denied is not None:
            return denied

        admins = database.list_users(user.casa_org_id, role=Role.CASA_ADMIN)
        return formatter.page(request, "casa_admins/index.html", {"admins": admins})

    @app.get("/casa_admins/new", name="new_casa_admin")
    async def new_casa_admin(request: Request):
        _, denied = _guard(request, Action.NEW)
        if denied is not None:
            return denied

        return formatter.page(
            request,
            "casa_admins/new.html",
            {"form": CasaAdminParams(), "errors": []},
        )

    @app.post("/casa_admins", name="create_casa_admin")
    async def create_casa_admin(request: Request):
        user, denied = _guard(request, Action.CREATE)
        if denied is not None:
            return denied

        params = await _read_casa_admin_params(request)
        organisation = database.get_org(user.casa_org_id)
        service = CreateCasaAdminService(database, invitations, organisation, params)

        try:
            created = service.create()
        except RecordInvalid as exc:
            outcome = Outcome.invalid(exc.messages, template="casa_admins/new.html", form=params)
        else:
            outcome = Outcome.success(
                created.casa_admin,
                redirect_to="casa_admins",
                notice=translate("casa_admins.saved"),
                alert=None if created.invitation.delivered else translate("casa_admins.email_not_sent"),
                json_status=status.HTTP_201_CREATED,
            )
        return formatter.render(request, outcome)

    @app.get("/casa_admins/{admin_id}/edit", name="edit_casa_admin")
    async def edit_casa_admin(request: Request, admin_id: str):
        user, denied = _guard(request, Action.EDIT)
        if denied is not None:
            return denied

        casa_admin = _load_casa_admin(user, admin_id)
        return formatter.page(
            request,
            "casa_admins/edit.html",
            {"casa_admin": casa_admin, "form": casa_admin, "errors": []},
        )

    @app.api_route("/casa_admins/{admin_id}", methods=["PUT", "PATCH", "POST"], name="casa_admin")
    async def update_casa_admin_route(request: Request, admin_id: str):
        user, denied = _guard(request, Action.UPDATE)
        if denied is not None:
            return denied

        casa_admin = _load_casa_admin(user, admin_id)
        params = await _read_casa_admin_params(request)

        try:
            updated = update_casa_admin(database, casa_admin, params)
        except RecordInvalid as exc:
            form = {
                "email": casa_admin.email,
                "display_name": casa_admin.display_name,
                **params.changes(),
            }
            outcome = Outcome.invalid(
                exc.messages,
                template="casa_admins/edit.html",
                casa_admin=casa_admin,
                form=form,
            )
        else:
            outcome = Outcome.success(
                updated,
                redirect_to="casa_admins",
                notice=translate("casa_admins.saved"),
            )
        return formatter.render(request, outcome)

    def _transition(request: Request, casa_admin: User, *, activate: bool) -> Response:
        try:
            if activate:
                result = lifecycle.activate(casa_admin)
            else:
                result = lifecycle.deactivate(casa_admin)
        except RecordInvalid as exc:
            outcome = Outcome.invalid(
                exc.messages,
                template="casa_admins/edit.html",
                casa_admin=casa_admin,
                form=casa_admin,
            )
            return formatter.render(request, outcome)

        if result.email_sent:
            notice = translate("casa_admins.activated" if activate else "casa_admins.deactivated")
            alert = None
        else:
            notice = None
            alert = translate("casa_admins.email_not_sent")

        outcome = Outcome.success(
            result.casa_admin,
            redirect_to="edit_casa_admin",
            notice=notice,
            alert=alert,
            admin_id=result.casa_admin.id,
        )
        return formatter.render(request, outcome)

    @app.api_route("/casa_admins/{admin_id}/activate", methods=["PATCH", "POST"], name="activate_casa_admin")
    async def activate_casa_admin(request: Request, admin_id: str):
        user, denied = _guard(request, Action.ACTIVATE)
        if denied is not None:
            return denied

        return _transition(request, _load_casa_admin(user, admin_id), activate=True)

    @app.api_route(
        "/casa_admins/{admin_id}/deactivate",
        methods=["PATCH", "POST"],
        name="deactivate_casa_admin",
    )
    async def deactivate_casa_admin(request: Request, admin_id: str):
        user, denied = _guard(request, Action.DEACTIVATE)
        if denied is not None:
            return denied

        return _transition(request, _load_casa_admin(user, admin_id), activate=False)

    @app.api_route(
        "/casa_admins/{admin_id}/resend_invitation",
        methods=["PATCH", "POST"],
        name="resend_invitation_casa_admin",
    )
    async def resend_invitation(request: Request, admin_id: str):
        user, denied = _guard(request, Action.RESEND_INVITATION)
        if denied is not None:
            return denied

        casa_admin = _load_casa_admin(user, admin_id)
        delivery = invitations.invite(casa_admin)
        refreshed = database.get_user(casa_admin.id) or casa_admin

        outcome = Outcome.success(
            refreshed,
            redirect_to="edit_casa_admin",
            notice=translate("casa_admins.invitation_sent") if delivery.delivered else None,
            alert=None if delivery.delivered else translate("casa_admins.email_not_sent"),
            admin_id=refreshed.id,
        )
        return formatter.render(request, outcome)

    return app


__all__ = ["create_app"]
