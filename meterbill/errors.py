"""
Error Taxonomy

Every failure the core can see is one of four kinds:

- VALIDATION: bad or missing reading, non-positive tariff. Shown inline per
  field and never sent to persistence.
- AUTHORIZATION: the backend rejected our credentials. Halts the current
  operation and tears down the session.
- TRANSIENT: network or service failure unrelated to auth.
- INVARIANT: something that should exist could not be found (e.g. the row
  to delete). Non-fatal, surfaced to the user.

Google client libraries raise very different error shapes depending on the
failure path. classify_error() is the single place that turns all of them
into one of the kinds above.
"""

from enum import Enum
from typing import Any, Optional

from pydantic import ValidationError as PydanticValidationError


class ErrorKind(str, Enum):
    """Tagged error variant."""
    VALIDATION = "validation"
    AUTHORIZATION = "authorization"
    TRANSIENT = "transient"
    INVARIANT = "invariant"


class MeterBillError(Exception):
    """Base exception for all classified failures."""

    kind: ErrorKind = ErrorKind.TRANSIENT

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.message = message
        self.cause = cause


class ValidationError(MeterBillError):
    """Input failed validation."""

    kind = ErrorKind.VALIDATION

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(message, cause)
        self.field = field


class AuthorizationError(MeterBillError):
    """Credentials were rejected; the session must be torn down."""

    kind = ErrorKind.AUTHORIZATION


class TransientBackendError(MeterBillError):
    """Network or service failure that is not auth-related."""

    kind = ErrorKind.TRANSIENT


class LogicInvariantViolation(MeterBillError):
    """An expected entity could not be located."""

    kind = ErrorKind.INVARIANT


UNAUTHENTICATED_STATUS = "UNAUTHENTICATED"
AUTH_TEXT_MARKERS = ("authentication credentials", "authentication")


def _response_payload(error: BaseException) -> dict[str, Any]:
    """
    Pull a dict payload out of an exception carrying an HTTP response.

    Covers gspread.exceptions.APIError and requests.HTTPError, both of which
    expose the underlying requests.Response as `.response`.
    """
    response = getattr(error, "response", None)
    if response is None:
        return {}

    payload: dict[str, Any] = {}
    status_code = getattr(response, "status_code", None)
    if status_code is not None:
        payload["status"] = status_code

    try:
        body = response.json()
    except Exception:
        body = None
    if isinstance(body, dict):
        payload.update(body)
    return payload


def _payload_is_auth_failure(payload: dict[str, Any]) -> bool:
    """Check a dict-shaped error payload for any authorization marker."""
    if payload.get("status") == 401 or payload.get("code") == 401:
        return True
    if payload.get("status") == UNAUTHENTICATED_STATUS:
        return True

    # {"result": {"error": {...}}} and {"error": {...}}
    result = payload.get("result")
    if isinstance(result, dict) and isinstance(result.get("error"), dict):
        if _payload_is_auth_failure(result["error"]):
            return True
    nested = payload.get("error")
    if isinstance(nested, dict) and _payload_is_auth_failure(nested):
        return True

    message = payload.get("message")
    if isinstance(message, str) and _text_is_auth_failure(message):
        return True
    return False


def _text_is_auth_failure(text: str) -> bool:
    return any(marker in text for marker in AUTH_TEXT_MARKERS)


def is_authorization_failure(error: Any) -> bool:
    """
    Decide whether an external error means our credentials were rejected.

    Any one of these is enough:
    - numeric code 401 (top level, or nested under `error` / `result.error`)
    - status literal "UNAUTHENTICATED"
    - free text containing "authentication credentials" or "authentication"
    """
    if isinstance(error, AuthorizationError):
        return True
    if isinstance(error, MeterBillError):
        return False
    if isinstance(error, str):
        return _text_is_auth_failure(error)
    if isinstance(error, dict):
        return _payload_is_auth_failure(error)

    if isinstance(error, BaseException):
        if getattr(error, "code", None) == 401:
            return True
        status = getattr(error, "status", None)
        if status == 401 or status == UNAUTHENTICATED_STATUS:
            return True
        if _payload_is_auth_failure(_response_payload(error)):
            return True
        return _text_is_auth_failure(str(error))

    return False


def classify_error(error: Any) -> MeterBillError:
    """
    Normalize any external error shape into a MeterBillError.

    Already-classified errors are returned unchanged. pydantic validation
    errors become VALIDATION; anything carrying an authorization marker
    becomes AUTHORIZATION; everything else is TRANSIENT.
    """
    if isinstance(error, MeterBillError):
        return error

    cause = error if isinstance(error, BaseException) else None

    if isinstance(error, PydanticValidationError):
        return ValidationError(str(error), cause=cause)

    if is_authorization_failure(error):
        return AuthorizationError(
            "Your session has expired. Please sign in again.",
            cause=cause,
        )

    if isinstance(error, dict):
        message = error.get("message") or str(error)
    else:
        message = str(error) or type(error).__name__
    return TransientBackendError(message, cause=cause)
