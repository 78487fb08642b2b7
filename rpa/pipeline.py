"""
Request dispatch pipeline.

A route is bound to an ordered list of stages. Each stage receives the shared
RequestContext, the request and the response under construction, and returns
``(status, error)``. The first stage that returns an error with a status of
400 or more ends the request with an error response; no later stage runs.
"""

import json
import logging
from dataclasses import dataclass
from http import HTTPStatus
from typing import Callable, Optional, Tuple

from starlette.concurrency import run_in_threadpool
from starlette.requests import Request
from starlette.responses import Response

from .application import Application
from .errors import MethodNotAllowed, RelyingPartyError

logger = logging.getLogger(__name__)

StageResult = Tuple[int, Optional[RelyingPartyError]]


@dataclass
class RequestContext:
    """Per-request scratch state shared by all stages."""
    app: Application
    body: bytes = b""
    session_id: str = ""
    logged_user: str = ""
    # User the request acts on behalf of, for log lines
    user_id: str = ""


Stage = Callable[[RequestContext, Request, Response], StageResult]


def remote_address(request: Request) -> str:
    client = request.client
    if client is None:
        return ""
    return f"{client.host}:{client.port}"


def write_body(response: Response, content, media_type: str, status_code: int = 200) -> None:
    """Replace the response body, keeping headers and cookies already set."""
    body = content.encode("utf-8") if isinstance(content, str) else content
    response.body = body
    response.status_code = status_code
    response.headers["content-length"] = str(len(body))
    response.headers["content-type"] = media_type


def write_json(response: Response, data, status_code: int = 200) -> None:
    write_body(response, json.dumps(data) + "\n", "application/json", status_code)


def redirect(response: Response, url: str, status_code: int = 301) -> None:
    response.headers["location"] = url
    write_body(response, "", "text/html; charset=utf-8", status_code)


def allowed_methods(request: Request, response: Response, *methods: str) -> StageResult:
    """Method guard: advertise the permitted methods and reject the rest."""
    response.headers["Access-Control-Allow-Methods"] = ",".join(methods)
    if request.method in methods:
        return 200, None
    return 405, MethodNotAllowed("Method not allowed")


def status_text(status: int) -> str:
    try:
        return HTTPStatus(status).phrase
    except ValueError:
        return ""


def write_error(response: Response, status: int, err: RelyingPartyError) -> None:
    if status == 404:
        text = "404 page not found"
    elif status in (400, 403):
        text = str(err)
    else:
        text = status_text(status)
    response.headers["x-content-type-options"] = "nosniff"
    if "location" in response.headers:
        del response.headers["location"]
    write_body(response, text + "\n", "text/plain; charset=utf-8", status)


class Pipeline:
    """An ordered chain of stages bound to one Application."""

    def __init__(self, app: Application, *stages: Stage):
        self.app = app
        self.stages = stages

    async def handle(self, request: Request) -> Response:
        """ASGI endpoint: read the body, then run the stages in a worker thread."""
        body = await request.body()
        return await run_in_threadpool(self.dispatch, request, body)

    def dispatch(self, request: Request, body: bytes = b"") -> Response:
        ctx = RequestContext(app=self.app, body=body)
        response = Response()
        status = 200

        for stage in self.stages:
            status, err = stage(ctx, request, response)
            if err is not None and status >= 400:
                logger.error("%s %s HTTP %d %s %s %s", ctx.session_id, ctx.user_id, status,
                             request.url.path, remote_address(request), err)
                write_error(response, status, err)
                return response

        logger.info("%d %s %s %s %s %s", status, request.method, request.url.path,
                    remote_address(request), ctx.session_id, ctx.user_id)
        return response
