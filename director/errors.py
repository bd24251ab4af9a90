from __future__ import annotations

from enum import Enum
from typing import Any

import httpx


class DirectorError(Exception):
    """Base class for every failure the generation engine raises on purpose.

    ``user_message`` is what a job exposes to its owner. ``internal`` marks
    failure classes whose raw text must not leak outside the service.
    """

    user_message = "Video generation failed. Please try again."
    internal = True

    def __init__(self, message: str, *, user_message: str | None = None) -> None:
        super().__init__(message)
        if user_message is not None:
            self.user_message = user_message


class ValidationError(DirectorError):
    user_message = "The request is invalid. Please fix it and try again."
    internal = False

    def __init__(self, message: str, *, user_message: str | None = None) -> None:
        super().__init__(message, user_message=user_message or message)


class NotFoundError(ValidationError):
    pass


class InvalidTransition(DirectorError):
    pass


class ClaimConflict(DirectorError):
    """Another worker changed the row between selection and the conditional update."""


class JobCancelled(DirectorError):
    user_message = "The job was cancelled."
    internal = False


class PlanningError(DirectorError):
    user_message = "The script could not be planned from this prompt. Please try again."


class ProviderErrorKind(str, Enum):
    AUTH = "auth"
    QUOTA = "quota"
    RATE_LIMIT = "rate_limit"
    TRANSIENT = "transient"
    CONNECTION = "connection"
    INVALID_REQUEST = "invalid_request"
    UNKNOWN = "unknown"


RETRYABLE_KINDS = frozenset(
    {ProviderErrorKind.RATE_LIMIT, ProviderErrorKind.TRANSIENT, ProviderErrorKind.CONNECTION}
)

_PROVIDER_MESSAGES = {
    ProviderErrorKind.AUTH: "{provider} authentication failed. Please check the {provider} API key in provider settings.",
    ProviderErrorKind.QUOTA: "{provider} quota exceeded or access denied. Please check your {provider} plan and permissions.",
    ProviderErrorKind.RATE_LIMIT: "{provider} is rate limiting requests. Please try again in a few minutes.",
    ProviderErrorKind.TRANSIENT: "{provider} is temporarily unavailable. Please try again later.",
    ProviderErrorKind.CONNECTION: "Unable to reach {provider}. Please try again later.",
    ProviderErrorKind.INVALID_REQUEST: "{provider} rejected the request parameters.",
    ProviderErrorKind.UNKNOWN: "{provider} returned an unexpected error. Please try again.",
}


class ProviderError(DirectorError):
    def __init__(
        self,
        provider: str,
        kind: ProviderErrorKind,
        message: str,
        *,
        status_code: int | None = None,
    ) -> None:
        super().__init__(
            f"{provider} {kind.value}: {message}",
            user_message=_PROVIDER_MESSAGES[kind].format(provider=provider),
        )
        self.provider = provider
        self.kind = kind
        self.status_code = status_code

    @property
    def retryable(self) -> bool:
        return self.kind in RETRYABLE_KINDS


class ProviderTimeout(DirectorError, TimeoutError):
    def __init__(self, provider: str, seconds: float) -> None:
        super().__init__(
            f"{provider} call exceeded {seconds:g}s",
            user_message=f"{provider} took too long to respond. Please try again later.",
        )
        self.provider = provider
        self.seconds = seconds


class RetryExhausted(DirectorError):
    def __init__(self, label: str, attempts: int, last_error: BaseException) -> None:
        super().__init__(f"{label} failed after {attempts} attempts: {last_error}")
        self.label = label
        self.attempts = attempts
        self.last_error = last_error
        self.user_message = getattr(last_error, "user_message", "A provider is unavailable. Please try again later.")


class PartialFailure(DirectorError):
    user_message = "Some scenes could not be generated. Please try again later."

    def __init__(self, message: str, failures: list[Any] | None = None) -> None:
        super().__init__(message)
        self.failures = list(failures or [])


class StageFailure(DirectorError):
    user_message = "Final video assembly failed. Please try again later."

    def __init__(self, stage: str, cause: BaseException) -> None:
        super().__init__(f"stage {stage!r} failed: {cause}")
        self.stage = stage
        self.cause = cause


def classify_http_error(provider: str, exc: httpx.HTTPError) -> ProviderError:
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        body = exc.response.text[:500]
        if status == 401:
            kind = ProviderErrorKind.AUTH
        elif status in (402, 403):
            kind = ProviderErrorKind.QUOTA
        elif status == 429:
            kind = ProviderErrorKind.RATE_LIMIT
        elif status >= 500:
            kind = ProviderErrorKind.TRANSIENT
        elif status >= 400:
            kind = ProviderErrorKind.INVALID_REQUEST
        else:
            kind = ProviderErrorKind.UNKNOWN
        return ProviderError(provider, kind, f"HTTP {status}: {body}", status_code=status)
    if isinstance(exc, httpx.TransportError):
        return ProviderError(provider, ProviderErrorKind.CONNECTION, str(exc) or type(exc).__name__)
    return ProviderError(provider, ProviderErrorKind.UNKNOWN, str(exc))


def is_retryable(exc: BaseException) -> bool:
    if isinstance(exc, ProviderError):
        return exc.retryable
    return isinstance(exc, ProviderTimeout)


CONFIGURATION_KINDS = frozenset({ProviderErrorKind.AUTH, ProviderErrorKind.QUOTA})


def describe_failure(exc: BaseException) -> tuple[str, str]:
    """Return ``(kind, message)`` for a failed job.

    ``kind`` is ``configuration`` when the owner has to fix something,
    ``transient`` when retrying later is the remedy, ``cancelled`` for
    cooperative cancellation and ``internal`` otherwise.
    """
    if isinstance(exc, RetryExhausted):
        return describe_failure(exc.last_error)[0], exc.user_message
    if isinstance(exc, JobCancelled):
        return "cancelled", exc.user_message
    if isinstance(exc, ValidationError):
        return "configuration", exc.user_message
    if isinstance(exc, ProviderError):
        if exc.kind in CONFIGURATION_KINDS or exc.kind == ProviderErrorKind.INVALID_REQUEST:
            return "configuration", exc.user_message
        return "transient", exc.user_message
    if isinstance(exc, (ProviderTimeout, StageFailure, PartialFailure, PlanningError)):
        return "transient", exc.user_message
    if isinstance(exc, DirectorError):
        return "internal", exc.user_message
    return "internal", DirectorError.user_message
