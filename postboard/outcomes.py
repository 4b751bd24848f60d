"""Classification of backend API payloads into success or failure outcomes.

The backend speaks two error dialects depending on the endpoint: the user
endpoints answer ``{"code": ..., "message": ...}`` while the posts endpoint
answers ``{"error": ..., "details": ...}``. Both are narrowed here so call
sites only ever branch on :class:`Success` versus :class:`Failure`.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Generic, Mapping, Optional, TypeVar, Union

from .errors import BackendTransportError

T = TypeVar("T")

NOT_FOUND_CODE = "NotFoundError"
GENERIC_ERROR_CODE = "Error"
HTTP_ERROR_CODE = "HTTPError"


@dataclass(frozen=True)
class Success(Generic[T]):
    value: T


@dataclass(frozen=True)
class Failure:
    code: str
    message: str
    details: Optional[Any] = None

    @property
    def is_not_found(self) -> bool:
        return self.code == NOT_FOUND_CODE


ApiOutcome = Union[Success[T], Failure]


def is_failure(payload: object) -> bool:
    """Return ``True`` when *payload* carries either error shape."""

    if not isinstance(payload, Mapping):
        return False
    return "error" in payload or "code" in payload


def _to_failure(payload: Mapping[str, Any]) -> Failure:
    if "code" in payload:
        code = str(payload.get("code") or GENERIC_ERROR_CODE)
        message = payload.get("message")
    else:
        code = GENERIC_ERROR_CODE
        message = payload.get("error")
    if not isinstance(message, str) or not message.strip():
        message = code
    return Failure(code=code, message=message.strip(), details=payload.get("details"))


def classify(
    payload: object,
    parse: Optional[Callable[[Any], T]] = None,
    *,
    status_code: int = 200,
) -> ApiOutcome[T]:
    """Narrow a decoded JSON payload into an :data:`ApiOutcome`.

    ``parse`` maps a success payload onto a typed value. Payloads it cannot
    map are treated as malformed responses and raise
    :class:`BackendTransportError`.
    """

    if is_failure(payload):
        return _to_failure(payload)  # type: ignore[arg-type]

    if status_code >= 400:
        return Failure(
            code=HTTP_ERROR_CODE,
            message=f"Backend request failed with status {status_code}",
            details=payload,
        )

    if parse is None:
        return Success(payload)  # type: ignore[arg-type]

    try:
        value = parse(payload)
    except (AttributeError, KeyError, TypeError, ValueError) as exc:
        raise BackendTransportError("Backend returned an unexpected response payload") from exc
    return Success(value)


__all__ = [
    "ApiOutcome",
    "Failure",
    "HTTP_ERROR_CODE",
    "NOT_FOUND_CODE",
    "Success",
    "classify",
    "is_failure",
]
