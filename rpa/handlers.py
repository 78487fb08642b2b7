"""
Common pipeline stages: default headers, session resolution and the plain
pages (index, protected, about, permit-user).
"""

import logging

from starlette.requests import Request
from starlette.responses import Response

from .cookies import CookieNotFound, read_secure_cookie, write_secure_cookie
from .errors import NotFound, UpstreamError
from .pipeline import RequestContext, StageResult, allowed_methods, redirect, write_body
from .session_store import Session, SessionNotFound, generate_session_id
from .templates import TemplateError, TemplateNotFound

logger = logging.getLogger(__name__)
audit_logger = logging.getLogger('rpa.audit')

CORS_ALLOW_HEADERS = (
    "Content-Type, Depth, User-Agent, X-File-Size, X-Requested-With, X-Requested-By, "
    "If-Modified-Since, X-File-Name, Cache-Control, Pragma, Expires, WWW-Authenticate"
)


def render_page(ctx: RequestContext, response: Response, name: str, data: dict) -> StageResult:
    """Render an HTML template into the response."""
    try:
        html = ctx.app.templates.render(name, data)
    except TemplateNotFound:
        return 500, UpstreamError(f"The template {name} does not exist.")
    except TemplateError as e:
        return 500, UpstreamError(f"The template {name} failed to render: {e}")
    write_body(response, html, "text/html; charset=utf-8")
    return 200, None


def base_headers(ctx: RequestContext, request: Request, response: Response) -> StageResult:
    """Add default CORS and no-cache headers."""
    response.headers["Access-Control-Allow-Origin"] = "*"
    response.headers["Access-Control-Allow-Credentials"] = "true"
    response.headers["Access-Control-Allow-Methods"] = "GET,POST,HEAD,OPTIONS"
    response.headers["Access-Control-Allow-Headers"] = CORS_ALLOW_HEADERS
    response.headers["Cache-Control"] = "no-cache, no-storage, max-age=0, must-revalidate"
    response.headers["Pragma"] = "no-cache"
    response.headers["Expires"] = "Sat, 26 Jul 1997 05:00:00 GMT"
    return 200, None


def _set_session_cookie(ctx: RequestContext, response: Response) -> None:
    options = ctx.app.options
    write_secure_cookie(response, options.session_cookie_name, ctx.session_id,
                        options.session_max_age, options.use_secure_cookie)


def create_new_session(ctx: RequestContext, response: Response) -> None:
    ctx.session_id = generate_session_id()
    ctx.logged_user = ""
    ctx.app.store.put(ctx.session_id, Session(user=""))
    _set_session_cookie(ctx, response)
    audit_logger.info("SESSION_CREATED session=%s", ctx.session_id)


def resolve_session(ctx: RequestContext, request: Request, response: Response) -> StageResult:
    """Bind the request to a session, creating one when the cookie is unusable."""
    options = ctx.app.options
    try:
        session_id = read_secure_cookie(request, options.session_cookie_name, options.use_secure_cookie)
        session = ctx.app.store.get(session_id)
    except (CookieNotFound, SessionNotFound) as e:
        logger.debug("No usable session (%s), creating a new one", e)
        create_new_session(ctx, response)
        return 200, None

    ctx.session_id = session_id
    ctx.logged_user = session.user
    _set_session_cookie(ctx, response)
    logger.debug("Setting logged user to %s", ctx.logged_user)
    # Re-put without an expiry so the record slides along with the cookie
    ctx.app.store.put(session_id, Session(user=session.user))
    return 200, None


def index(ctx: RequestContext, request: Request, response: Response) -> StageResult:
    if request.url.path != "/":
        return 404, NotFound("Page not found")
    status, err = allowed_methods(request, response, "GET", "HEAD")
    if err:
        return status, err

    options = ctx.app.options
    return render_page(ctx, response, "index.html", {
        "StaticURLBase": options.static_url_base,
        "MpinJSURL": options.mpin_js_url,
        "User": ctx.logged_user,
        "ClientSettingsURL": options.client_settings_url,
        "MobileAppFullURL": options.mobile_app_full_url,
    })


def protected(ctx: RequestContext, request: Request, response: Response) -> StageResult:
    status, err = allowed_methods(request, response, "GET")
    if err:
        return status, err

    if not ctx.logged_user:
        redirect(response, "/", 301)
        return 200, None

    page = request.url.path[len("/protected"):].strip("/")
    template_name = f"protected_{page}.html" if page else "protected.html"
    if page and (not page.isidentifier() or not ctx.app.templates.exists(template_name)):
        return 404, NotFound("Page not found")

    return render_page(ctx, response, template_name, {
        "Welcome": False,
        "User": ctx.logged_user,
        "StaticURLBase": ctx.app.options.static_url_base,
    })


def about(ctx: RequestContext, request: Request, response: Response) -> StageResult:
    status, err = allowed_methods(request, response, "GET")
    if err:
        return status, err
    redirect(response, ctx.app.options.about_url, 301)
    return 301, None


def permit_user(ctx: RequestContext, request: Request, response: Response) -> StageResult:
    """Revocation hook.

    When the RPS has RPAPermitUserURL set it asks here before handing out a
    time permit share. Returning 403 makes the PinPad show "Unauthorized".
    """
    status, err = allowed_methods(request, response, "GET")
    if err:
        return status, err
    write_body(response, "", "application/json")
    return 200, None
