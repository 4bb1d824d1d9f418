from allops_pm.exceptions.handlers import (
    InternalError,
    InvalidInputError,
    MismatchError,
    MisconfiguredError,
    NotFoundError,
    OperationCancelledError,
    PMException,
    UpstreamError,
    UpstreamTimeoutError,
    UpstreamUnavailableError,
    register_exception_handlers,
)

__all__ = [
    "PMException",
    "InvalidInputError",
    "NotFoundError",
    "MismatchError",
    "MisconfiguredError",
    "UpstreamError",
    "UpstreamTimeoutError",
    "UpstreamUnavailableError",
    "InternalError",
    "OperationCancelledError",
    "register_exception_handlers",
]
