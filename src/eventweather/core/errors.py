"""Exception hierarchy for the weather-alert pipeline.

Each error carries the HTTP status and machine-readable code the API layer
renders. Pipeline code raises these; only the API and the scheduler catch them.
"""

from __future__ import annotations

from typing import Any


class WeatherAlertError(Exception):
    """Base exception for all application errors."""

    status_code = 500
    error_code = "INTERNAL_ERROR"

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": False,
            "error": self.error_code,
            "message": self.message,
            "details": self.details,
        }


class ConfigurationError(WeatherAlertError):
    """Missing coordinates, missing or disabled config, invalid template."""

    status_code = 400
    error_code = "CONFIGURATION_ERROR"


class NotFoundError(WeatherAlertError):
    """Referenced event, alert, or action does not exist."""

    status_code = 404
    error_code = "NOT_FOUND"

    def __init__(self, resource: str, **identifiers: Any) -> None:
        super().__init__(f"{resource} not found", resource=resource, **identifiers)


class AuthenticationError(WeatherAlertError):
    """No identifiable caller on a protected route."""

    status_code = 401
    error_code = "AUTHENTICATION_REQUIRED"


class PermissionDeniedError(WeatherAlertError):
    status_code = 403
    error_code = "PERMISSION_DENIED"


class FeatureDisabledError(WeatherAlertError):
    """Weather alerts are switched off system-wide."""

    status_code = 403
    error_code = "FEATURE_DISABLED"

    def __init__(self, message: str = "Weather alerts feature is disabled by Super Admin") -> None:
        super().__init__(message, featureDisabled=True)


class ConflictError(WeatherAlertError):
    status_code = 409
    error_code = "CONFLICT"


class WeatherFetchError(WeatherAlertError):
    """Provider unreachable or returned a malformed response."""

    status_code = 502
    error_code = "WEATHER_FETCH_ERROR"


class NotificationDeliveryError(WeatherAlertError):
    """A single recipient delivery failed. Never aborts sibling deliveries."""

    status_code = 502
    error_code = "NOTIFICATION_DELIVERY_ERROR"


class PersistenceError(WeatherAlertError):
    """A config, log, or event write failed."""

    status_code = 500
    error_code = "PERSISTENCE_ERROR"
