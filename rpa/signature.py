"""
Activation link payload.

An activation link carries three query parameters: ``i`` is the hex-encoded
JSON identity ``{"userID", "issued", "mobile"}``, ``e`` is the link expiry in
RFC3339 UTC and ``s`` is the activation key. Decoding never raises; a link
that cannot be used comes back as an invalid Signature with a reason.
"""

import binascii
import json
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

logger = logging.getLogger(__name__)

ISSUED_FORMAT = "%Y-%m-%d %H:%M:%S"
HUMAN_ISSUED_FORMAT = "%d %b %y %H:%M %z"
EXPIRES_FORMAT = "%Y-%m-%dT%H:%M:%SZ"

_ISSUED_RE = re.compile(r"^\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2}$")


@dataclass
class Signature:
    is_valid: bool = False
    identity: str = ""
    error_message: str = ""
    user_id: str = ""
    issued: str = ""
    human_issued: str = ""
    activated: bool = False
    device_name: str = ""
    activate_key: str = ""


def device_name_for(mobile: int) -> str:
    return "PC" if not mobile else "Mobile"


def encode_identity(user_id: str, issued: str, mobile: int) -> str:
    """Hex-encode the identity payload the way the RPS issues it."""
    payload = json.dumps({"userID": user_id, "issued": issued, "mobile": mobile})
    return payload.encode("utf-8").hex()


def _parse_issued(issued: str) -> datetime:
    # strptime alone accepts single-digit fields; the layout is fixed-width
    if not _ISSUED_RE.match(issued):
        raise ValueError(f"issued time {issued!r} does not match {ISSUED_FORMAT}")
    return datetime.strptime(issued, ISSUED_FORMAT).replace(tzinfo=timezone.utc)


def _invalid(signature: Signature, message: str) -> Signature:
    signature.is_valid = False
    signature.error_message = message
    return signature


def decode_signature(identity: str, expires: str, activate_key: str,
                     now: Optional[datetime] = None) -> Signature:
    """Decode an activation link into a Signature."""
    s = Signature(identity=identity, activate_key=activate_key)

    try:
        raw = binascii.unhexlify(identity)
    except (binascii.Error, ValueError) as e:
        logger.debug("Identity is not hex: %s", e)
        return _invalid(s, "Invalid identity encoding")

    try:
        data = json.loads(raw)
    except ValueError as e:
        logger.debug("Identity is not JSON: %s", e)
        return _invalid(s, "Invalid identity data")

    if not isinstance(data, dict):
        return _invalid(s, "Invalid identity data")

    user_id = data.get("userID", "")
    issued = data.get("issued", "")
    mobile = data.get("mobile", 0)
    if not isinstance(user_id, str) or not isinstance(issued, str) \
            or isinstance(mobile, bool) or not isinstance(mobile, int):
        return _invalid(s, "Invalid identity data")

    try:
        issued_at = _parse_issued(issued)
    except ValueError as e:
        logger.debug("Bad issue time for %s: %s", user_id, e)
        return _invalid(s, "Invalid issue time")

    if not user_id:
        logger.error("Invalid IDENTITY %s", identity)
        return _invalid(s, "Invalid identity")

    s.user_id = user_id
    s.issued = issued
    s.human_issued = issued_at.strftime(HUMAN_ISSUED_FORMAT)
    s.device_name = device_name_for(mobile)

    now = now or datetime.now(timezone.utc)
    # Both sides are fixed-width RFC3339 UTC, so string order is time order
    if expires < now.strftime(EXPIRES_FORMAT):
        return _invalid(s, "Link expired")

    s.is_valid = True
    s.error_message = ""
    return s
