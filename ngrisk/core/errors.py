from __future__ import annotations


class NgRiskError(Exception):
    """Base class for every error ngrisk raises on purpose."""


class InvocationError(NgRiskError):
    """Raised for bad CLI arguments or configuration values."""


class NotFound(InvocationError):
    """Raised when the scan root does not exist."""


class PermissionDenied(InvocationError):
    """Raised when the scan root exists but cannot be read."""


class CatalogueLoadError(InvocationError):
    """Raised when a rule catalogue file is malformed."""


class InvariantViolation(NgRiskError):
    """Raised when the scanner breaks one of its own contracts (a bug, not bad input)."""


class ScanCancelled(NgRiskError):
    """Raised when a caller-supplied cancellation signal stops a scan."""
