"""
Error taxonomy for pipeline stages.

Stages return one of these alongside a status code; the dispatcher decides
how to render it. They are values, not control flow.
"""


class RelyingPartyError(Exception):
    status_code = 500


class BadRequest(RelyingPartyError):
    status_code = 400


class Forbidden(RelyingPartyError):
    status_code = 403


class NotFound(RelyingPartyError):
    status_code = 404


class MethodNotAllowed(RelyingPartyError):
    status_code = 405


class UpstreamError(RelyingPartyError):
    """A collaborator on the critical path (directory, RPS, templates) failed."""
    status_code = 500


_BY_STATUS = {cls.status_code: cls for cls in (BadRequest, Forbidden, NotFound, MethodNotAllowed)}


def error_for_status(status: int, message: str = "") -> RelyingPartyError:
    """Wrap a status reported by a collaborator in the matching error type."""
    return _BY_STATUS.get(status, RelyingPartyError)(message)
