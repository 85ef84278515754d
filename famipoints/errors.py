"""
Exception types raised by the service layer and its backends.
"""

from __future__ import annotations


class FamipointsError(Exception):
    """Base class for all famipoints errors."""


class ConfigurationError(FamipointsError):
    """Missing or placeholder credentials, or an unsupported service type."""


class BackendError(FamipointsError):
    """The backing store rejected a query or mutation."""


class AuthError(BackendError):
    """Invalid credentials, duplicate account or missing session."""


class InvalidCredentialsError(AuthError):
    """Unknown email or wrong password."""


class NetworkError(FamipointsError):
    """Transport failure talking to the remote API."""


class PermissionDeniedError(BackendError):
    """The acting user may not read or change the addressed rows."""


class NotFoundError(BackendError):
    """No row with the given id is visible to the acting user."""
