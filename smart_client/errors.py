"""
Custom error types for the SMART client.

Server errors describe what went wrong talking to the FHIR server, auth
errors describe why an authorization could not be attempted or completed.
Aborted authorizations are never errors: they complete with an aborted
``AuthResult`` instead.
"""

from typing import Any


class SMARTClientError(Exception):
    """Base exception for all SMART client errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for serialization."""
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
        }


# Server and Transport Errors


class ServerError(SMARTClientError):
    """Base exception for failed requests against a FHIR server."""

    pass


class TransportError(ServerError):
    """Raised when a request could not be delivered (DNS, TLS, connect, timeout)."""

    def __init__(self, url: str, original_error: str | None = None):
        self.url = url
        self.original_error = original_error
        message = f"Request to {url} failed"
        if original_error:
            message += f": {original_error}"
        super().__init__(message, details={"url": url, "original_error": original_error})


class NonHttpResponseError(ServerError):
    """Raised when the server answered with something that is not a valid HTTP response."""

    def __init__(self, url: str, original_error: str | None = None):
        self.url = url
        self.original_error = original_error
        super().__init__(
            f"No valid HTTP response from {url}",
            details={"url": url, "original_error": original_error},
        )


class HttpStatusError(ServerError):
    """Raised when the server responds with a status code of 400 or higher."""

    def __init__(self, status: int, reason: str, url: str | None = None, body: str | None = None):
        self.status = status
        self.reason = reason
        self.url = url
        self.body = body
        super().__init__(
            f"{status}: {reason}",
            details={"status": status, "reason": reason, "url": url},
        )


class BodyParseError(ServerError):
    """Raised when a response body cannot be parsed as JSON."""

    def __init__(self, raw_body: bytes | str, parse_error: str):
        self.raw_body = raw_body
        self.parse_error = parse_error
        super().__init__(
            f"Failed to parse response body: {parse_error}",
            details={"parse_error": parse_error},
        )


class ResourceLocationUnknownError(ServerError):
    """Raised when a URL cannot be resolved against the server."""

    def __init__(self, location: str):
        self.location = location
        super().__init__(f"Cannot resolve resource location: {location}", details={"location": location})


class CapabilityFetchError(ServerError):
    """Raised when the server's capability statement cannot be fetched or parsed."""

    def __init__(self, message: str, cause: SMARTClientError | None = None):
        self.cause = cause
        details = {"cause": cause.to_dict()} if cause else {}
        super().__init__(message, details=details)


# Authorization Errors


class AuthorizationError(SMARTClientError):
    """Base exception for authorization errors."""

    pass


class NoAuthorizationMethodError(AuthorizationError):
    """Raised when no usable authorization method can be derived."""

    def __init__(self, message: str = "Failed to detect the authorization method from server metadata"):
        super().__init__(message)


class NotReadyError(AuthorizationError):
    """Raised when an operation is invoked before the client is ready."""

    def __init__(self, operation: str):
        self.operation = operation
        super().__init__(
            f"Cannot {operation}: the client is not ready, call ready() first",
            details={"operation": operation},
        )


class OAuthFlowError(AuthorizationError):
    """Raised when the authorization server reports an error or a flow step fails."""

    def __init__(self, error: str, description: str | None = None):
        self.error = error
        self.description = description
        message = f"Authorization failed: {description or error}"
        super().__init__(message, details={"error": error, "error_description": description})


class StateMismatchError(OAuthFlowError):
    """Raised when the redirect's state parameter does not match the pending request."""

    def __init__(self):
        super().__init__("invalid_state", "State parameter mismatch")


# Operation Errors


class OperationNotSupportedError(SMARTClientError):
    """Raised when the server does not list an operation in its capability statement."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"The server does not support operation {name}", details={"operation": name})


class InvalidOperationError(SMARTClientError):
    """Raised when an operation does not satisfy its OperationDefinition."""

    def __init__(self, name: str, missing_parameters: list[str]):
        self.name = name
        self.missing_parameters = missing_parameters
        super().__init__(
            f"Operation {name} is missing required parameters: {', '.join(missing_parameters)}",
            details={"operation": name, "missing_parameters": missing_parameters},
        )


# Configuration Errors


class ConfigurationError(SMARTClientError):
    """Raised when there's a configuration error."""

    pass


class MissingConfigurationError(ConfigurationError):
    """Raised when required configuration is missing."""

    def __init__(self, config_key: str, description: str | None = None):
        self.config_key = config_key
        message = f"Missing required configuration: {config_key}"
        if description:
            message += f". {description}"
        super().__init__(
            message,
            details={"config_key": config_key, "description": description},
        )
