"""Service error hierarchy for image generation providers.

This module defines the exception hierarchy for service-level errors:
- ServiceError: Base for all service errors
- TransientError: Errors that may succeed on a later attempt (network, rate limits, timeouts)
- PermanentError: Errors that will not succeed on retry (credentials, bad requests, bad payloads)

The dispatcher records every failure on the job the same way; the classes
exist so logs and callers can tell failure causes apart.
"""


class ServiceError(Exception):
    """Base exception for all service errors."""

    pass


class TransientError(ServiceError):
    """Transient error that may succeed on retry.

    Examples:
    - Network timeouts
    - Rate limit exceeded (429)
    - Service unavailable (5xx)
    """

    pass


class PermanentError(ServiceError):
    """Permanent error that will not succeed on retry.

    Examples:
    - Missing or invalid credentials (401, 403)
    - Invalid request parameters (400)
    - Response without an image payload
    """

    pass


# Provider-specific errors
class ProviderNetworkError(TransientError):
    """Network failure or timeout talking to the provider."""

    pass


class ProviderRateLimitError(TransientError):
    """Rate limit exceeded (429)."""

    pass


class ProviderUnavailableError(TransientError):
    """Provider server error (5xx)."""

    pass


class ProviderTimeoutError(TransientError):
    """Generation call exceeded the configured time limit."""

    pass


class ProviderAuthError(PermanentError):
    """Missing or rejected credentials (401, 403)."""

    pass


class ProviderRequestError(PermanentError):
    """Request rejected by the provider (other 4xx)."""

    pass


class ProviderResponseError(PermanentError):
    """Provider answered but the response carried no usable image."""

    pass
