"""Error taxonomy for the generation pipeline.

Every failure that can end a generation call is a :class:`GenerationError`
subclass carrying a machine-readable ``kind`` and a human message that the
caller is expected to show as-is.  The HTTP layer maps ``status_code`` onto
the response.

Propagation policy
------------------
- Pre-flight and model-call failures (:class:`Unauthenticated`,
  :class:`QuotaExceeded`, :class:`NoCredential`, :class:`GenerationTimeout`,
  :class:`EmptyResponse`, :class:`NetworkFailure`) abort the call.
- :class:`ResizePostProcessFailure` is recoverable: the orchestrator logs it
  and returns the unresized image.
- Usage accounting failures never reach the caller at all.

No error is retried automatically.
"""

from __future__ import annotations


class GenerationError(Exception):
    """Base class for user-facing generation failures.

    Attributes:
        kind: Stable identifier of the failure class (e.g. ``"quota_exceeded"``).
        message: Human-readable message, safe to display directly.
        status_code: HTTP status used by the API layer.
    """

    kind: str = "generation_error"
    status_code: int = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"kind": self.kind, "detail": self.message}


class Unauthenticated(GenerationError):
    kind = "unauthenticated"
    status_code = 401

    def __init__(self, message: str = "User is not authenticated.") -> None:
        super().__init__(message)


class QuotaExceeded(GenerationError):
    """The user has used up their generation quota."""

    kind = "quota_exceeded"
    status_code = 429

    def __init__(self, used: int, limit: int) -> None:
        self.used = used
        self.limit = limit
        super().__init__(
            f"Generation limit reached ({used}/{limit}). Ask an admin for more credits."
        )


class NoCredential(GenerationError):
    """No API key could be resolved for this user.

    The message differs by role: admins get a configuration hint, everyone
    else a permission hint.
    """

    kind = "no_credential"
    status_code = 403

    def __init__(self, is_admin: bool) -> None:
        self.is_admin = is_admin
        if is_admin:
            message = (
                "ADMIN: No API key detected (environment or database). "
                "Configure the system key in the admin panel or check the environment variables."
            )
        else:
            message = (
                "Access denied: no API key available. "
                "Ask the administrator to configure the system key."
            )
        super().__init__(message)


class GenerationTimeout(GenerationError):
    kind = "generation_timeout"
    status_code = 504

    def __init__(self, timeout_seconds: float) -> None:
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"The model took too long to respond (timeout after {timeout_seconds:g}s). "
            "The image may be too complex; try reducing references or instructions."
        )


class EmptyResponse(GenerationError):
    kind = "empty_response"
    status_code = 502

    def __init__(self, message: str = "The model did not return a valid image (empty response).") -> None:
        super().__init__(message)


class NetworkFailure(GenerationError):
    """Any other transport or model error; the collaborator's message is passed through."""

    kind = "network_failure"
    status_code = 502


class ResizePostProcessFailure(GenerationError):
    """Resizing the returned image failed.  Recoverable, never surfaced to callers."""

    kind = "resize_failure"
    status_code = 500
