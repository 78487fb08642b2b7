"""
Identity protocol stages: verify, authenticate, activate and logout.

Verify is called by the RPS when a client registers an identity; it checks
the request, optionally confirms the user in the directory and mails the
activation link or code. Authenticate exchanges the client's auth OTT with
the RPS and logs the session in. Activate renders the page behind the mailed
link and, on POST, activates the identity at the RPS.
"""

import json
import logging
import re
import time
from dataclasses import dataclass
from typing import Optional, Tuple
from urllib.parse import parse_qsl

from starlette.requests import Request
from starlette.responses import Response

from .cookies import clear_cookie
from .directory import DirectoryError
from .errors import BadRequest, Forbidden, UpstreamError, error_for_status
from .handlers import render_page
from .pipeline import RequestContext, StageResult, allowed_methods, redirect, write_json
from .rps_client import RPSError
from .session_store import Session, SessionNotFound
from .signature import decode_signature, device_name_for

logger = logging.getLogger(__name__)
audit_logger = logging.getLogger('rpa.audit')

VERIFY_KEYS = ("mpinId", "userId", "expireTime", "mobile",
               "activateKey", "activationCode", "resend", "deviceName", "userData")
VERIFY_REQUIRED_KEYS = VERIFY_KEYS[:4]
AUTH_RESPONSE_KEYS = ("authOTT", "version", "pass")

OTP_TTL_SECONDS = 64
MAX_USER_ID_BYTES = 256
ACTIVATE_KEY_LENGTH = 64
AUTH_OTT_LENGTH = 64
EXPIRE_TIME_LENGTH = 20
MAX_ACTIVATION_CODE_DIGITS = 12

# Printable ASCII only
_USER_ID_INVALID = re.compile(r"[^a-zA-Z0-9 -/:-@\[-`{-~]")
_HEX_INVALID = re.compile(r"[^0-9a-fA-F]")
_EXPIRE_TIME_INVALID = re.compile(r"[^-0-9TZ:]")

INVALID_JSON = "BAD REQUEST. INVALID JSON"
INVALID_KEY = "BAD REQUEST. INVALID KEY"
INVALID_USER_ID = "BAD REQUEST. INVALID USER ID"


def _byte_len(value: str) -> int:
    return len(value.encode("utf-8"))


def _is_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _decode_json_object(body: bytes) -> Optional[dict]:
    try:
        data = json.loads(body)
    except ValueError:
        return None
    return data if isinstance(data, dict) else None


# Verify

@dataclass
class VerifyUserRequest:
    mpin_id: str
    user_id: str
    expire_time: str
    mobile: int
    activate_key: str = ""
    activation_code: int = 0

    @classmethod
    def from_json(cls, data: dict) -> "VerifyUserRequest":
        """Build from a key-checked JSON object; raises TypeError on bad field types."""
        def text(key):
            value = data.get(key)
            if value is None:
                return ""
            if not isinstance(value, str):
                raise TypeError(f"{key} must be a string")
            return value

        def number(key):
            value = data.get(key)
            if value is None:
                return 0
            if not _is_int(value):
                raise TypeError(f"{key} must be an integer")
            return value

        return cls(
            mpin_id=text("mpinId"),
            user_id=text("userId"),
            expire_time=text("expireTime"),
            mobile=number("mobile"),
            activate_key=text("activateKey"),
            activation_code=number("activationCode"),
        )


def _check_verify_keys(ctx: RequestContext, data: dict) -> Optional[BadRequest]:
    for key in data:
        if key not in VERIFY_KEYS:
            logger.error("%s Invalid data received. %s argument unnecessary", ctx.session_id, key)
            return BadRequest(INVALID_KEY)
    for key in VERIFY_REQUIRED_KEYS:
        if key not in data:
            logger.error("%s Invalid data received. %s argument missing", ctx.session_id, key)
            return BadRequest(INVALID_KEY)

    mobile = data["mobile"]
    conditional = None
    if _is_int(mobile) or isinstance(mobile, float):
        if mobile == 1:
            conditional = "activateKey"
        elif mobile == 0:
            conditional = "activationCode"
    if conditional and conditional not in data:
        logger.error("%s Invalid data received. %s argument missing", ctx.session_id, conditional)
        return BadRequest(INVALID_KEY)
    return None


def _validate_verify_request(ctx: RequestContext, rq: VerifyUserRequest) -> StageResult:
    sid = ctx.session_id

    if not 1 <= _byte_len(rq.user_id) <= MAX_USER_ID_BYTES:
        logger.error("%s %s Invalid data received. userId argument invalid length", sid, rq.user_id)
        return 403, Forbidden(INVALID_USER_ID)
    if _USER_ID_INVALID.search(rq.user_id):
        logger.error("%s %s Invalid data received. userId argument contains invalid characters", sid, rq.user_id)
        return 403, Forbidden(INVALID_USER_ID)

    if _HEX_INVALID.search(rq.mpin_id):
        logger.error("%s %s Invalid data received. mpinId argument contains invalid characters", sid, rq.user_id)
        return 400, BadRequest("BAD REQUEST. INVALID MPIN ID")

    if len(rq.expire_time) != EXPIRE_TIME_LENGTH or _EXPIRE_TIME_INVALID.search(rq.expire_time):
        logger.error("%s %s Invalid data received. expireTime argument invalid", sid, rq.user_id)
        return 400, BadRequest("BAD REQUEST. INVALID EXPIRE TIME")

    if rq.mobile == 1:
        if _byte_len(rq.activate_key) not in (0, ACTIVATE_KEY_LENGTH) or _HEX_INVALID.search(rq.activate_key):
            logger.error("%s %s Invalid data received. activateKey argument invalid", sid, rq.user_id)
            return 400, BadRequest("BAD REQUEST. INVALID ACTIVATEKEY")
    elif rq.mobile == 0:
        if len(str(rq.activation_code)) > MAX_ACTIVATION_CODE_DIGITS:
            logger.error("%s %s Invalid data received. activationCode argument invalid length", sid, rq.user_id)
            return 400, BadRequest("BAD REQUEST. INVALID ACTIVATIONCODE")

    if rq.mobile not in (0, 1):
        logger.error("%s %s Invalid data received. mobile argument invalid number", sid, rq.user_id)
        return 400, BadRequest("BAD REQUEST. INVALID MOBILE")

    return 200, None


def activation_base_url(ctx: RequestContext, request: Request) -> str:
    """Activation link base, rebased onto RPS-BASE-URL for proxied deployments."""
    url = ctx.app.options.verify_identity_url
    rps_base = request.headers.get("RPS-BASE-URL")
    if url.startswith("/") and rps_base:
        return f"{rps_base.rstrip('/')}/{url.lstrip('/')}"
    return url


def verify_user(ctx: RequestContext, request: Request, rq: VerifyUserRequest) -> StageResult:
    """Confirm the user (unless forced) and send the activation mail."""
    o = ctx.app.options
    base_url = activation_base_url(ctx, request)

    if o.force_activate:
        logger.debug("force_activate option set! User activated without verification!")
        audit_logger.info("FORCE_ACTIVATE session=%s user=%s", ctx.session_id, rq.user_id)
        return 200, None

    if o.ldap_verify:
        try:
            entries = ctx.app.directory.count_entries(rq.user_id)
        except DirectoryError as e:
            logger.error("%s %s %s", ctx.session_id, rq.user_id, e)
            return 500, UpstreamError(str(e))
        if entries == 0:
            logger.warning("%s %s Not Found Entry", ctx.session_id, rq.user_id)
            if not o.ldap_verify_show:
                return 200, None
            return 403, Forbidden("Not Found Entry")

    device_name = device_name_for(rq.mobile)
    mailer = ctx.app.mailer

    if rq.activate_key:
        validate_url = f"{base_url}?i={rq.mpin_id}&e={rq.expire_time}&s={rq.activate_key}"
        logger.debug("Sending activation email for user %s {%s}", rq.user_id, ctx.session_id)
        try:
            mailer.send_activation_mail(rq.user_id, device_name, validate_url)
        except Exception as e:
            logger.warning("%s %s Failed to send mail: %s", ctx.session_id, rq.user_id, e)

    if rq.activation_code:
        logger.debug("Sending activation code email for user %s {%s}", rq.user_id, ctx.session_id)
        try:
            mailer.send_activation_code_mail(rq.user_id, device_name, rq.activation_code)
        except Exception as e:
            logger.warning("%s %s Failed to send mail: %s", ctx.session_id, rq.user_id, e)

    return 200, None


def verify_user_handler(ctx: RequestContext, request: Request, response: Response) -> StageResult:
    status, err = allowed_methods(request, response, "POST")
    if err:
        return status, err

    data = _decode_json_object(ctx.body)
    if data is None:
        logger.error("%s Can not decode body as JSON", ctx.session_id)
        return 400, BadRequest(INVALID_JSON)

    key_error = _check_verify_keys(ctx, data)
    if key_error:
        return 400, key_error

    try:
        rq = VerifyUserRequest.from_json(data)
    except TypeError as e:
        logger.error("%s Can not decode body as JSON: %s", ctx.session_id, e)
        return 400, BadRequest(INVALID_JSON)
    ctx.user_id = rq.user_id

    status, err = _validate_verify_request(ctx, rq)
    if err:
        return status, err

    status, err = verify_user(ctx, request, rq)
    if err:
        if status == 403:
            return status, Forbidden(INVALID_USER_ID)
        return status, err

    write_json(response, {"forceActivate": ctx.app.options.force_activate})
    return 200, None


# Authenticate

def _parse_auth_request(ctx: RequestContext) -> Tuple[Optional[str], Optional[BadRequest]]:
    data = _decode_json_object(ctx.body)
    if data is None:
        logger.error("%s Can not decode body as JSON", ctx.session_id)
        return None, BadRequest(INVALID_JSON)

    for key in data:
        if key != "mpinResponse":
            logger.error("%s Invalid data received. %s argument unnecessary", ctx.session_id, key)
            return None, BadRequest(INVALID_KEY)
    mpin_response = data.get("mpinResponse")
    if not isinstance(mpin_response, dict):
        logger.error("%s Invalid data received. mpinResponse argument missing", ctx.session_id)
        return None, BadRequest(INVALID_KEY)

    for key in mpin_response:
        if key not in AUTH_RESPONSE_KEYS:
            logger.error("%s Invalid data received. %s argument unnecessary", ctx.session_id, key)
            return None, BadRequest(INVALID_KEY)
    if "authOTT" not in mpin_response:
        logger.error("%s Invalid data received. authOTT argument missing", ctx.session_id)
        return None, BadRequest(INVALID_KEY)

    auth_ott = mpin_response["authOTT"]
    if not isinstance(auth_ott, str) or _byte_len(auth_ott) != AUTH_OTT_LENGTH or _HEX_INVALID.search(auth_ott):
        logger.error("%s Invalid data received. authOTT argument invalid", ctx.session_id)
        return None, BadRequest("BAD REQUEST. AUTH OTT")
    return auth_ott, None


def send_login_result(ctx: RequestContext, user_id: str, auth_ott: str, status: int, message: str) -> None:
    """Report the outcome to the RPS and log the session in on success.

    The report is fire-and-forget: a failure is logged and never reaches the
    client.
    """
    try:
        ctx.app.rps.report_login_result(ctx.session_id, user_id, auth_ott, status, message)
    except Exception as e:
        logger.warning("%s %s Failed to report login result: %s", ctx.session_id, user_id, e)

    if status == 200 and ctx.session_id:
        logger.debug("Authenticated user %s {%s}", user_id, ctx.session_id)
        ctx.app.store.put(ctx.session_id, Session(user=user_id))
        audit_logger.info("LOGIN_SUCCESS session=%s user=%s", ctx.session_id, user_id)


def authenticate_user_handler(ctx: RequestContext, request: Request, response: Response) -> StageResult:
    status, err = allowed_methods(request, response, "POST")
    if err:
        return status, err

    auth_ott, err = _parse_auth_request(ctx)
    if err:
        return 400, err

    user_id, message, status = ctx.app.rps.authenticate(auth_ott, ctx.session_id)
    ctx.user_id = user_id

    send_login_result(ctx, user_id, auth_ott, status, message)

    if ctx.app.options.request_otp:
        now_ms = int(time.time()) * 1000
        write_json(response, {
            "expireTime": now_ms + OTP_TTL_SECONDS * 1000,
            "ttlSeconds": OTP_TTL_SECONDS,
            "nowTime": now_ms,
        })
    else:
        write_json(response, {
            "someUserData": "This will be handled by onSuccessLogin handler.",
            "userId": user_id,
        })

    # Mirror the RPS verdict; below 400 the pipeline treats it as success
    if status >= 400:
        return status, error_for_status(status, message)
    return status, None


# Activate

def _form_values(request: Request, body: bytes) -> dict:
    """Query parameters, overridden by a url-encoded POST body."""
    values = dict(request.query_params)
    content_type = request.headers.get("content-type", "")
    if request.method == "POST" and content_type.startswith("application/x-www-form-urlencoded"):
        values.update(parse_qsl(body.decode("utf-8", errors="replace")))
    return values


def activate_handler(ctx: RequestContext, request: Request, response: Response) -> StageResult:
    """Render the activation page; invalid or expired links still get a page."""
    status, err = allowed_methods(request, response, "GET", "POST")
    if err:
        return status, err

    form = _form_values(request, ctx.body)
    signature = decode_signature(form.get("i", ""), form.get("e", ""), form.get("s", ""))
    ctx.user_id = signature.user_id
    logger.debug("Activation request for identity %s: %s {%s}", signature.identity, signature, ctx.session_id)

    if request.method == "POST" and signature.is_valid:
        try:
            ctx.app.rps.activate_user(signature.identity, signature.activate_key)
        except RPSError as e:
            logger.error("%s %s Activation failed: %s", ctx.session_id, signature.user_id, e)
        else:
            signature.activated = True
            audit_logger.info("USER_ACTIVATED session=%s user=%s", ctx.session_id, signature.user_id)

    return render_page(ctx, response, "activate.html", {
        "StaticURLBase": ctx.app.options.static_url_base,
        "IsValid": signature.is_valid,
        "Activated": signature.activated,
        "UserID": signature.user_id,
        "HumanIssued": signature.human_issued,
        "DeviceName": signature.device_name,
        "ErrorMessage": signature.error_message,
        "User": ctx.logged_user,
    })


# Logout

def logout_handler(ctx: RequestContext, request: Request, response: Response) -> StageResult:
    status, err = allowed_methods(request, response, "GET", "POST", "OPTIONS")
    if err:
        return status, err

    store = ctx.app.store

    if request.method == "GET":
        store.delete(ctx.session_id)
        clear_cookie(response, ctx.app.options.session_cookie_name)
        redirect(response, "/", 301)
        audit_logger.info("LOGOUT session=%s user=%s", ctx.session_id, ctx.logged_user)
        return 301, None

    if request.method == "OPTIONS":
        return 200, None

    data = _decode_json_object(ctx.body)
    session_token = data.get("sessionToken", "") if data is not None else None
    user_id = data.get("userId", "") if data is not None else None
    if not isinstance(session_token, str) or not isinstance(user_id, str):
        logger.error("%s Can not decode body as JSON", ctx.session_id)
        return 400, BadRequest(INVALID_JSON)
    logger.debug("Logout request. Session token: %s", session_token)
    ctx.user_id = user_id

    try:
        logged_user = store.get(session_token).user
    except SessionNotFound:
        logged_user = ""
    if logged_user != user_id:
        logger.error("%s %s The logged user %s does not match the requested user %s",
                     ctx.session_id, user_id, logged_user, user_id)
        return 400, BadRequest("Logout failed")

    store.delete(session_token)
    audit_logger.info("LOGOUT session=%s user=%s", session_token, user_id)
    return 200, None
