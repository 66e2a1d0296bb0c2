"""
cloudbase_manager.tier0_core.errors
────────────────────────────────────
Unified error taxonomy for every control-plane call. Transport failures,
malformed response bodies, and remote error envelopes all surface as a
CloudBaseError subclass carrying the remote error code, the request id, and
the API action that produced them.

Callers branch on ``code`` (e.g. "InvalidParameter.RoleNotExist",
"ResourceInUse.Function") rather than on message text.
"""
from __future__ import annotations

from typing import Any


# ── Base error ────────────────────────────────────────────────────────────────

class CloudBaseError(Exception):
    """
    Base class for all manager errors. Every error has:
    - message: human-readable text, prefixed with ``[action]`` when known
    - code: remote error code, or a stable local code for local failures
    - request_id: remote request id, when the platform returned one
    - action: API action name (e.g. "CreateEnv") that failed
    - original: the lower-level exception this one wraps, if any
    """

    code: str = ""

    def __init__(
        self,
        message: str = "",
        *,
        code: str | None = None,
        request_id: str = "",
        action: str = "",
        original: BaseException | None = None,
    ) -> None:
        self.raw_message = message
        self.code = code if code is not None else self.__class__.code
        self.request_id = request_id
        self.action = action
        self.original = original
        self.message = f"[{action}] {message}" if action else message
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": {
                "type": type(self).__name__,
                "code": self.code,
                "message": self.message,
                "request_id": self.request_id,
                "action": self.action,
            }
        }


# ── Local failures ────────────────────────────────────────────────────────────

class ConfigurationError(CloudBaseError):
    """Misconfiguration: bad credential pairing, unknown service, bad settings."""
    code = "configuration_error"


class CredentialsMissingError(ConfigurationError):
    """No secret id / secret key could be resolved. Fatal, never retried."""
    code = "credentials_missing"


class ValidationError(CloudBaseError):
    """A caller-supplied argument failed local validation."""
    code = "validation_error"

    def __init__(
        self,
        message: str = "Validation failed.",
        *,
        fields: dict[str, Any] | None = None,
        **kwargs: Any,
    ) -> None:
        self.fields = fields or {}
        super().__init__(message, **kwargs)

    def to_dict(self) -> dict[str, Any]:
        d = super().to_dict()
        if self.fields:
            d["error"]["fields"] = self.fields
        return d


class NotFoundError(CloudBaseError):
    """Requested environment or resource does not exist."""
    code = "not_found"


class InvalidOperationError(CloudBaseError):
    """Operation is not allowed in the resource's current state."""
    code = "INVALID_OPERATION"


# ── Remote call failures ──────────────────────────────────────────────────────

class TransportError(CloudBaseError):
    """Network-level failure: connect error, timeout, TLS, proxy."""
    code = "transport_error"


class ResponseParseError(CloudBaseError):
    """Response body was not JSON (e.g. an HTML gateway error page)."""
    code = "response_parse_error"


class RemoteServiceError(CloudBaseError):
    """The platform returned a structured ``Response.Error`` envelope."""


class SagaCompensationError(CloudBaseError):
    """
    A payment step failed after an environment was already allocated.
    ``original`` holds the triggering error; ``code`` and ``request_id``
    are copied from it so callers can still branch on the remote code.
    """
    code = "saga_compensation"

    def __init__(
        self,
        message: str,
        *,
        env_id: str = "",
        original: BaseException | None = None,
        **kwargs: Any,
    ) -> None:
        self.env_id = env_id
        if isinstance(original, CloudBaseError):
            kwargs.setdefault("code", original.code)
            kwargs.setdefault("request_id", original.request_id)
        super().__init__(message, original=original, **kwargs)


__all__ = [
    "CloudBaseError",
    "ConfigurationError",
    "CredentialsMissingError",
    "ValidationError",
    "NotFoundError",
    "InvalidOperationError",
    "TransportError",
    "ResponseParseError",
    "RemoteServiceError",
    "SagaCompensationError",
]
