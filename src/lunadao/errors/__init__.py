"""LunaDAO error handling.

Structured exception hierarchy shared by the governance engine, the record
stores and the service facade.
"""

from .exceptions import (
    AlreadyActedError,
    ConfigurationError,
    CooldownError,
    ErrorCategory,
    ErrorSeverity,
    ExternalUnavailable,
    GovernanceError,
    NotFoundError,
    NoVotingPowerError,
    ProposalRejectedError,
    QuorumNotReachedError,
    StateError,
    StorageError,
    ThresholdError,
    UnsupportedActionError,
    ValidationError,
    create_timeout_error,
    create_validation_error,
)

__all__ = [
    "GovernanceError",
    "ErrorCategory",
    "ErrorSeverity",
    "ValidationError",
    "ThresholdError",
    "CooldownError",
    "NotFoundError",
    "StateError",
    "AlreadyActedError",
    "NoVotingPowerError",
    "QuorumNotReachedError",
    "ProposalRejectedError",
    "UnsupportedActionError",
    "ExternalUnavailable",
    "StorageError",
    "ConfigurationError",
    "create_validation_error",
    "create_timeout_error",
]
