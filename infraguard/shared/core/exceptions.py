from typing import Optional, Dict, Any


class InfraGuardException(Exception):
    """Base exception for all infraguard errors."""
    def __init__(
        self,
        message: str,
        code: str = "internal_error",
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details or {}

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"


class ConfigurationError(InfraGuardException):
    """Raised when application configuration is invalid or missing."""
    def __init__(self, message: str, code: str = "config_error", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code=code, details=details)


class ConstructionError(InfraGuardException):
    """Raised when a provider API handle or an account client bundle cannot be built."""
    def __init__(self, message: str, code: str = "construction_error", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code=code, details=details)


class ResourceNotFoundError(InfraGuardException):
    """Raised when a lookup by id or account finds nothing."""
    def __init__(self, message: str, code: str = "not_found", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code=code, details=details)


class OperationCancelledError(InfraGuardException):
    """Raised when an operation is aborted by its deadline before completion."""
    def __init__(self, message: str, code: str = "cancelled", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code=code, details=details)


class StoreError(InfraGuardException):
    """Base class for resource store failures."""
    def __init__(self, message: str, code: str = "store_error", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code=code, details=details)


class StoreClosedError(StoreError):
    """Raised when the store is used before open() or after close()."""
    def __init__(self, message: str = "store is closed", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code="store_closed", details=details)


class StorageIOError(StoreError):
    """Raised when the backing storage engine fails."""
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code="storage_io_error", details=details)


class UnknownResourceKindError(StoreError):
    """Raised for a kind outside the resource catalog."""
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code="unknown_kind", details=details)


class InvalidResourceError(StoreError):
    """Raised when an object does not satisfy its kind's stored object contract."""
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code="invalid_resource", details=details)


class ProviderConflictError(StoreError):
    """Raised when a write would change the provider of a persisted object."""
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code="provider_conflict", details=details)
