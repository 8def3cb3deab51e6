"""Error taxonomy for the validation harness.

Fatal errors (configuration, connectivity) abort the run before or while cases
execute. Case-scoped errors are caught by the case runner and recorded against
the case that raised them.
"""


class HarnessError(Exception):
    """Base class for harness errors."""


class ConfigurationError(HarnessError):
    """Raised for invalid timeout ordering, malformed fixtures or bad options."""


class ConnectivityError(HarnessError):
    """Raised when no reachable serving endpoint can be established."""


class ServiceError(HarnessError):
    """Raised when the serving API answers with an error."""

    def __init__(self, message: str, status_code: int = 0):
        super().__init__(message)
        self.status_code = status_code


class ProvisionError(HarnessError):
    """Raised when a model cannot be made available locally."""


class ModelNotFoundError(ProvisionError):
    """Raised when the registry does not know the requested model name."""


class ValidationFailure(HarnessError):
    """Raised when a response does not meet its acceptance criterion."""


FATAL_ERRORS = (ConfigurationError, ConnectivityError)
CASE_ERRORS = (ProvisionError, ServiceError, ValidationFailure)
