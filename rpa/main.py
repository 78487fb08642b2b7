"""
M-Pin Relying Party Application - FastAPI front end

Serves the demo pages, the identity protocol endpoints the RPS and the PinPad
client call (verify, authenticate, activate, logout) and the static assets.
"""

import logging
from contextlib import asynccontextmanager
from datetime import timedelta
from pathlib import Path
from typing import Optional

from fastapi import FastAPI
from fastapi.staticfiles import StaticFiles

from . import handlers, protocol
from .application import Application, Directory, Mailer, RelyingPartyServer
from .config import Options, load_options
from .directory import LdapDirectory
from .mail import SmtpMailer
from .pipeline import Pipeline
from .rps_client import RPSClient
from .session_store import SessionStore
from .templates import TemplateRenderer

# Logging setup
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s [%(levelname)s] %(name)s: %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)
logger = logging.getLogger('rpa')

VERSION = "0.3.0"

# Stages enforce their own method lists
ALL_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


def _url_prefix(url_base: str) -> str:
    return "/" + url_base.strip("/")


def _mount_directory(app: FastAPI, url_base: str, directory: str, name: str) -> None:
    if not Path(directory).is_dir():
        logger.warning("Not serving %s: directory %s does not exist", url_base, directory)
        return
    app.mount(_url_prefix(url_base), StaticFiles(directory=directory), name=name)


def build_application(options: Options,
                      store: Optional[SessionStore] = None,
                      rps: Optional[RelyingPartyServer] = None,
                      directory: Optional[Directory] = None,
                      mailer: Optional[Mailer] = None,
                      templates: Optional[TemplateRenderer] = None) -> Application:
    """Wire the collaborators, using the network-backed ones unless given."""
    return Application(
        options=options,
        store=store or SessionStore(session_lifetime=timedelta(seconds=options.session_max_age)),
        rps=rps or RPSClient(options),
        directory=directory or LdapDirectory(options),
        mailer=mailer or SmtpMailer(options),
        templates=templates or TemplateRenderer(options.templates_path),
    )


def create_app(options: Optional[Options] = None, **collaborators) -> FastAPI:
    """Build the ASGI app. Keyword arguments override build_application defaults."""
    options = options or load_options()
    application = build_application(options, **collaborators)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("RPA %s listening for RPS %s", VERSION, options.rps_base_url)
        if options.force_activate:
            logger.warning("force_activate is set: identities are activated without verification")
        yield
        logger.info("RPA shutting down with %d sessions", application.store.session_count())

    app = FastAPI(
        title="M-Pin Relying Party",
        description="Demo relying party front end for the M-Pin RPS",
        version=VERSION,
        lifespan=lifespan,
    )
    app.state.application = application

    def pipeline(*stages) -> Pipeline:
        return Pipeline(application, handlers.base_headers, handlers.resolve_session, *stages)

    routes = [
        ("/mpinVerify", pipeline(protocol.verify_user_handler)),
        ("/mpinAuthenticate", pipeline(protocol.authenticate_user_handler)),
        ("/mpinActivate", pipeline(protocol.activate_handler)),
        ("/mpinPermitUser", pipeline(handlers.permit_user)),
        ("/logout", pipeline(protocol.logout_handler)),
        ("/about", pipeline(handlers.about)),
        ("/protected", pipeline(handlers.protected)),
        ("/protected/{page:path}", pipeline(handlers.protected)),
    ]
    for path, route_pipeline in routes:
        app.add_route(path, route_pipeline.handle, methods=ALL_METHODS)

    _mount_directory(app, options.static_url_base, options.static_path, "static")
    if options.mobile_support:
        _mount_directory(app, options.mobile_app_full_url, options.mobile_app_path, "mobile")

    # Everything else goes to the index stage, which answers 404 off "/"
    app.add_route("/{path:path}", pipeline(handlers.index).handle, methods=ALL_METHODS)

    return app


if __name__ == "__main__":
    import uvicorn

    opts = load_options()
    ssl_kwargs = {}
    if opts.enable_tls:
        ssl_kwargs = {"ssl_certfile": opts.cert_file, "ssl_keyfile": opts.key_file}
    uvicorn.run(
        create_app(opts),
        host=opts.address or "0.0.0.0",
        port=opts.port,
        **ssl_kwargs
    )
