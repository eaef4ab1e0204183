"""
Error taxonomy shared by Kodislovo services and routes.

Routes map each class to an HTTP status through ``http_status``.
"""


class KodislovoError(Exception):
    """Base class for all errors raised by Kodislovo services."""

    http_status = 500


class LoadError(KodislovoError):
    """Manifest or variant document is unreachable or malformed."""

    http_status = 502

    def __init__(self, message, not_found=False):
        super().__init__(message)
        self.not_found = not_found
        if not_found:
            self.http_status = 404


class ValidationError(KodislovoError):
    """Input the user can correct and retry (identity fields, codes, ids)."""

    http_status = 400


class AttemptFinishedError(KodislovoError):
    """Mutation attempted on a finished attempt."""

    http_status = 409


class RequestInFlight(KodislovoError):
    """An identical idempotence-sensitive request is still running."""

    http_status = 409


class KeyResolutionError(KodislovoError):
    """No usable answer key could be resolved for autocheck."""

    http_status = 422


class RemoteError(KodislovoError):
    """Non-2xx response or transport failure talking to the remote service."""

    http_status = 502

    def __init__(self, message, status=None, body=None):
        super().__init__(message)
        self.status = status
        self.body = body
        if status is not None and 400 <= status < 500:
            self.http_status = status
