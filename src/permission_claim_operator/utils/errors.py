"""Error classification and sanitization utilities."""

from __future__ import annotations

import re

from kubernetes.client.exceptions import ApiException

# Patterns that might expose credentials
SENSITIVE_PATTERNS = [
    r"(bearer)\s+[A-Za-z0-9\-_\.=]+",
    r"(eyJ)[A-Za-z0-9\-_]+\.[A-Za-z0-9\-_]+\.[A-Za-z0-9\-_]+",
]

# Fields to redact completely
SENSITIVE_FIELDS = {
    "token",
    "password",
    "client-key-data",
    "client-certificate-data",
    "kubeconfig",
    "secret",
}


def sanitize_error_message(message: str) -> str:
    """Sanitize error message to remove credentials.

    Args:
        message: Original error message

    Returns:
        Sanitized error message with sensitive data redacted
    """
    sanitized = message

    for pattern in SENSITIVE_PATTERNS:
        sanitized = re.sub(pattern, r"\1 [REDACTED]", sanitized, flags=re.IGNORECASE)

    for field in SENSITIVE_FIELDS:
        sanitized = re.sub(
            rf"\b{re.escape(field)}[\"']?[:=]\s*[\"']?([^\s,;\)\"']+)",
            rf"{field}: [REDACTED]",
            sanitized,
            flags=re.IGNORECASE,
        )

    return sanitized


def sanitize_exception(error: BaseException) -> str:
    """Sanitize exception message."""
    return sanitize_error_message(str(error))


def is_not_found(error: BaseException) -> bool:
    """Return True for a 404 response from the API server."""
    return isinstance(error, ApiException) and error.status == 404


def is_conflict(error: BaseException) -> bool:
    """Return True for a 409 response (already exists, or stale resourceVersion)."""
    return isinstance(error, ApiException) and error.status == 409


class ReconcileStepError(Exception):
    """A reconcile sub-step failed; the whole invocation is retried."""

    def __init__(self, kind: str, operation: str, cause: BaseException):
        self.kind = kind
        self.operation = operation
        self.cause = cause
        super().__init__(f"{operation} {kind}: {sanitize_exception(cause)}")

    @property
    def status(self) -> int | None:
        """HTTP status of the underlying API error, if any."""
        return getattr(self.cause, "status", None)
