"""Error taxonomy for the director gateway.

Every failure the gateway reports is one of these kinds. The core raises
them; the service boundary turns them into a failed ``DirectorCoreResult``
with a matching HTTP status.

=========================  ======  =========================================
Kind                       Status  Notes
=========================  ======  =========================================
InvalidBody                400     body is not parseable JSON
RequestValidationError     400     schema / field violation
MissingCredential          401     no usable provider key
ProviderError              502*    upstream failure; only retryable kind
MalformedProviderResponse  502     2xx reply missing required sections
=========================  ======  =========================================

``*`` the provider's own status code is surfaced when one is known.
"""
from __future__ import annotations

from typing import Any

from schemas import DirectorCoreResult

GATEWAY_FAILURE_STATUS = 502


class DirectorError(Exception):
    kind = "director_error"
    status_code = 500
    retryable = False

    def __init__(self, message: str, details: Any = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_result(self, mode: str | None = None, provider: str | None = None) -> DirectorCoreResult:
        return DirectorCoreResult(
            success=False,
            mode=mode,
            error=self.message,
            kind=self.kind,
            provider=provider,
            status=self.status_code,
            retryable=self.retryable,
            details=self.details,
        )


class InvalidBody(DirectorError):
    kind = "invalid_body"
    status_code = 400

    def __init__(self, message: str = "Request body is not valid JSON", details: Any = None):
        super().__init__(message, details)


class RequestValidationError(DirectorError):
    kind = "validation_error"
    status_code = 400

    def __init__(self, errors: list[str], message: str | None = None):
        self.errors = list(errors)
        super().__init__(message or "; ".join(self.errors) or "Invalid request", {"errors": self.errors})


class MissingCredential(DirectorError):
    kind = "missing_credential"
    status_code = 401

    def __init__(self, provider: str, env_vars: tuple[str, ...], headers: tuple[str, ...]):
        self.provider = provider
        self.env_vars = env_vars
        self.headers = headers
        message = (
            f"Missing credentials for {provider}. Send one of the headers "
            f"{', '.join(headers)} or configure {' or '.join(env_vars)} on the server."
        )
        super().__init__(message, {"provider": provider, "envVars": list(env_vars), "headers": list(headers)})


class ProviderError(DirectorError):
    kind = "provider_error"
    retryable = True

    def __init__(self, message: str, status: int | None = None, details: Any = None, provider: str | None = None):
        super().__init__(message, details)
        self.provider = provider
        self.status_code = status if status and status >= 400 else GATEWAY_FAILURE_STATUS


class MalformedProviderResponse(DirectorError):
    kind = "malformed_provider_response"
    status_code = GATEWAY_FAILURE_STATUS

    def __init__(self, message: str, raw_text: str | None = None):
        super().__init__(message, {"rawText": raw_text} if raw_text else None)
        self.raw_text = raw_text
