"""Web interface serving the profile, profile-edit and signup pages."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Optional

from fastapi import APIRouter, Depends, FastAPI, Form, Request, status
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse
from fastapi.templating import Jinja2Templates
from starlette.responses import Response
from uvicorn.middleware.proxy_headers import ProxyHeadersMiddleware

from .auth import RequestContext, sign_out
from .backend import BackendFactory, backend_factory
from .config import Settings, load_settings, trusted_proxy_hosts
from .errors import BackendTransportError, IdentityProviderError, PageError
from .identity import IdentityProvider
from .pages import (
    FormError,
    load_user_detail,
    load_user_edit,
    submit_signup,
    submit_user_edit,
)
from .sessions import CODE_VERIFIER_COOKIE, SessionResolver

logger = logging.getLogger("postboard.web")

TEMPLATE_DIR = Path(__file__).resolve().parent / "templates"


def _template_environment() -> Jinja2Templates:
    templates = Jinja2Templates(directory=str(TEMPLATE_DIR))
    templates.env.filters["format_datetime"] = _format_datetime
    return templates


def _format_datetime(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y/%m/%d %H:%M")


def _wants_json(request: Request) -> bool:
    return "application/json" in request.headers.get("accept", "")


def register_ui_routes(
    app: FastAPI,
    *,
    settings: Settings,
    resolver: SessionResolver,
    make_backend: BackendFactory,
) -> None:
    """Expose the HTML pages on the provided FastAPI app."""

    templates = _template_environment()
    router = APIRouter(include_in_schema=False)

    async def _request_context(request: Request) -> RequestContext:
        session = await resolver.resolve(request)
        context = RequestContext(
            request=request,
            session=session,
            backend=make_backend(session.access_token),
            provider=resolver.provider,
        )
        request.state.page_context = context
        return context

    def _render(
        ctx: RequestContext,
        template: str,
        *,
        status_code: int = status.HTTP_200_OK,
        **extra: object,
    ) -> Response:
        context: Dict[str, object] = {"user": ctx.identity, "now": datetime.now}
        context.update(extra)
        response = templates.TemplateResponse(
            ctx.request, template, context, status_code=status_code
        )
        return ctx.finish(response)

    def _render_form_error(ctx: RequestContext, template: str, result: FormError, **extra: object) -> Response:
        if _wants_json(ctx.request):
            return ctx.finish(
                JSONResponse(result.as_dict(), status_code=status.HTTP_400_BAD_REQUEST)
            )
        return _render(
            ctx,
            template,
            status_code=status.HTTP_400_BAD_REQUEST,
            error=result.error,
            form=result.values,
            **extra,
        )

    def _render_error_page(request: Request, *, title: str, message: str, status_code: int) -> Response:
        context: Dict[str, object] = {"user": None, "now": datetime.now, "title": title, "message": message}
        page_context: Optional[RequestContext] = getattr(request.state, "page_context", None)
        if page_context is not None:
            context["user"] = page_context.identity
        response = templates.TemplateResponse(
            request, "error.html", context, status_code=status_code
        )
        if page_context is not None:
            page_context.finish(response)
        return response

    async def _page_error_handler(request: Request, exc: PageError) -> Response:
        return _render_error_page(
            request, title=exc.title, message=exc.message, status_code=exc.status_code
        )

    async def _transport_error_handler(request: Request, exc: BackendTransportError) -> Response:
        logger.error("Backend API unavailable while serving %s: %s", request.url.path, exc)
        return _render_error_page(
            request,
            title="Something went wrong",
            message="The service is temporarily unavailable. Please try again later.",
            status_code=status.HTTP_502_BAD_GATEWAY,
        )

    app.add_exception_handler(PageError, _page_error_handler)
    app.add_exception_handler(BackendTransportError, _transport_error_handler)

    @router.get("/", name="ui_home")
    async def homepage(ctx: RequestContext = Depends(_request_context)):
        if ctx.identity is None:
            target = ctx.request.url_for("ui_signup")
        else:
            target = ctx.request.url_for("ui_user_detail", user_id=ctx.identity.id)
        return ctx.finish(RedirectResponse(target, status_code=status.HTTP_303_SEE_OTHER))

    @router.get("/users/{user_id}", response_class=HTMLResponse, name="ui_user_detail")
    async def user_detail(user_id: str, ctx: RequestContext = Depends(_request_context)):
        detail = await load_user_detail(ctx, user_id)
        return _render(
            ctx,
            "user_detail.html",
            page_user=detail.profile,
            posts=detail.posts,
            is_own_profile=detail.is_own_profile,
        )

    @router.get("/users/{user_id}/edit", response_class=HTMLResponse, name="ui_user_edit")
    async def user_edit(user_id: str, ctx: RequestContext = Depends(_request_context)):
        result = await load_user_edit(ctx, user_id)
        if isinstance(result, Response):
            return ctx.finish(result)
        return _render(
            ctx,
            "user_edit.html",
            page_user=result,
            user_id=user_id,
            form={"name": result.name, "bio": result.bio or ""},
        )

    @router.post("/users/{user_id}/edit", name="ui_user_edit_submit")
    async def user_edit_submit(
        user_id: str,
        ctx: RequestContext = Depends(_request_context),
        name: str = Form(""),
        bio: str = Form(""),
    ):
        result = await submit_user_edit(ctx, user_id, name=name, bio=bio)
        if isinstance(result, FormError):
            return _render_form_error(ctx, "user_edit.html", result, user_id=user_id)
        logger.info("User %s updated their profile", user_id)
        return ctx.finish(result)

    @router.get("/signup", response_class=HTMLResponse, name="ui_signup")
    async def signup_form(ctx: RequestContext = Depends(_request_context)):
        return _render(ctx, "signup.html")

    @router.post("/signup", name="ui_signup_submit")
    async def signup_submit(
        ctx: RequestContext = Depends(_request_context),
        provider: str = Form(""),
    ):
        redirect_to = settings.oauth_redirect_url or str(ctx.request.url_for("auth_callback"))
        result = submit_signup(ctx, provider, redirect_to=redirect_to)
        if isinstance(result, FormError):
            return _render_form_error(ctx, "signup.html", result)
        return ctx.finish(result)

    @router.get("/auth/callback", name="auth_callback")
    async def auth_callback(request: Request, ctx: RequestContext = Depends(_request_context)):
        provider_error = request.query_params.get("error_description") or request.query_params.get("error")
        if provider_error:
            raise PageError(provider_error, status_code=status.HTTP_400_BAD_REQUEST)

        code = request.query_params.get("code")
        verifier = request.cookies.get(CODE_VERIFIER_COOKIE)
        if not code or not verifier:
            raise PageError("Sign-in could not be completed", status_code=status.HTTP_400_BAD_REQUEST)

        try:
            session = await ctx.provider.exchange_code_for_session(code, verifier)
        except IdentityProviderError as exc:
            logger.warning("OAuth code exchange failed: %s", exc.message)
            raise PageError(exc.message, status_code=status.HTTP_400_BAD_REQUEST) from exc

        ctx.cookies.delete(CODE_VERIFIER_COOKIE)
        ctx.cookies.store_session(session)
        logger.info("User %s signed in", session.identity.id)
        target = request.url_for("ui_user_detail", user_id=session.identity.id)
        return ctx.finish(RedirectResponse(target, status_code=status.HTTP_303_SEE_OTHER))

    @router.post("/logout", name="ui_logout")
    async def logout(ctx: RequestContext = Depends(_request_context)):
        result = await sign_out(ctx)
        return ctx.finish(
            RedirectResponse(result.url or "/", status_code=status.HTTP_303_SEE_OTHER)
        )

    app.include_router(router)


def create_app(
    *,
    settings: Optional[Settings] = None,
    identity_provider: Optional[IdentityProvider] = None,
    backend: Optional[BackendFactory] = None,
) -> FastAPI:
    """Create the web application."""

    if settings is None:
        settings = load_settings()

    if identity_provider is None:
        identity_provider = IdentityProvider(
            settings.auth_url,
            settings.auth_anon_key,
            timeout=settings.http_timeout,
        )
    if backend is None:
        backend = backend_factory(settings.api_base_url, timeout=settings.http_timeout)

    app = FastAPI(
        title="Postboard",
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.add_middleware(ProxyHeadersMiddleware, trusted_hosts=trusted_proxy_hosts(settings))
    app.state.settings = settings

    resolver = SessionResolver(identity_provider, secure_cookies=settings.secure_cookies)
    register_ui_routes(app, settings=settings, resolver=resolver, make_backend=backend)
    return app


__all__ = ["create_app", "register_ui_routes"]
