"""Exception hierarchy for LunaDAO.

This module defines the structured error taxonomy used by the governance
engine. Every error carries a category, a severity and free-form metadata so
that callers (and the service facade) can explain which precondition was
violated without parsing messages.
"""

import time
from enum import Enum
from typing import Any, Dict, Optional


class ErrorSeverity(Enum):
    """Error severity levels."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorCategory(Enum):
    """Error categories."""

    VALIDATION = "validation"
    AUTHORIZATION = "authorization"
    RATE_LIMIT = "rate_limit"
    NOT_FOUND = "not_found"
    STATE = "state"
    OUTCOME = "outcome"
    EXECUTION = "execution"
    EXTERNAL = "external"
    STORAGE = "storage"
    CONFIGURATION = "configuration"
    SYSTEM = "system"


class GovernanceError(Exception):
    """Base exception for all LunaDAO errors."""

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        category: ErrorCategory = ErrorCategory.SYSTEM,
        cause: Optional[Exception] = None,
        retryable: bool = False,
        metadata: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.severity = severity
        self.category = category
        self.cause = cause
        self.retryable = retryable
        self.metadata = metadata or {}
        self.timestamp = time.time()

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary."""
        return {
            "type": self.__class__.__name__,
            "message": self.message,
            "error_code": self.error_code,
            "severity": self.severity.value,
            "category": self.category.value,
            "cause": str(self.cause) if self.cause else None,
            "retryable": self.retryable,
            "metadata": self.metadata,
            "timestamp": self.timestamp,
        }

    def __str__(self) -> str:
        return self.message


class ValidationError(GovernanceError):
    """Malformed input."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        expected: Optional[Any] = None,
        **kwargs,
    ):
        kwargs.setdefault("error_code", "VALIDATION_FAILED")
        super().__init__(message, category=ErrorCategory.VALIDATION, **kwargs)
        self.field = field
        self.value = value
        self.expected = expected

    def to_dict(self) -> Dict[str, Any]:
        """Convert validation error to dictionary."""
        data = super().to_dict()
        data.update(
            {
                "field": self.field,
                "value": str(self.value) if self.value is not None else None,
                "expected": str(self.expected) if self.expected is not None else None,
            }
        )
        return data


class ThresholdError(GovernanceError):
    """Voting power below a required threshold."""

    def __init__(self, message: str, required: int = 0, available: int = 0, **kwargs):
        kwargs.setdefault("error_code", "INSUFFICIENT_VOTING_POWER")
        super().__init__(
            message,
            category=ErrorCategory.AUTHORIZATION,
            metadata={"required": required, "available": available},
            **kwargs,
        )
        self.required = required
        self.available = available


class CooldownError(GovernanceError):
    """Proposer exceeded the proposal rate limit."""

    def __init__(
        self,
        message: str,
        recent_proposals: int = 0,
        retry_after: Optional[float] = None,
        **kwargs,
    ):
        kwargs.setdefault("error_code", "PROPOSAL_COOLDOWN")
        super().__init__(
            message,
            category=ErrorCategory.RATE_LIMIT,
            metadata={"recent_proposals": recent_proposals, "retry_after": retry_after},
            **kwargs,
        )
        self.recent_proposals = recent_proposals
        self.retry_after = retry_after


class NotFoundError(GovernanceError):
    """Unknown proposal."""

    def __init__(self, message: str, resource_id: Optional[str] = None, **kwargs):
        kwargs.setdefault("error_code", "NOT_FOUND")
        super().__init__(
            message,
            category=ErrorCategory.NOT_FOUND,
            severity=ErrorSeverity.LOW,
            metadata={"resource_id": resource_id},
            **kwargs,
        )
        self.resource_id = resource_id


class StateError(GovernanceError):
    """Operation attempted outside its valid status or time window."""

    def __init__(
        self,
        message: str,
        status: Optional[str] = None,
        now: Optional[float] = None,
        **kwargs,
    ):
        kwargs.setdefault("error_code", "INVALID_STATE")
        super().__init__(
            message,
            category=ErrorCategory.STATE,
            metadata={"status": status, "now": now},
            **kwargs,
        )
        self.status = status
        self.now = now


class AlreadyActedError(GovernanceError):
    """Voter already voted on this proposal."""

    def __init__(self, message: str, voter_address: Optional[str] = None, **kwargs):
        kwargs.setdefault("error_code", "ALREADY_VOTED")
        super().__init__(
            message,
            category=ErrorCategory.STATE,
            metadata={"voter_address": voter_address},
            **kwargs,
        )
        self.voter_address = voter_address


class NoVotingPowerError(GovernanceError):
    """Voter resolved to zero voting power."""

    def __init__(self, message: str, voter_address: Optional[str] = None, **kwargs):
        kwargs.setdefault("error_code", "NO_VOTING_POWER")
        super().__init__(
            message,
            category=ErrorCategory.AUTHORIZATION,
            metadata={"voter_address": voter_address},
            **kwargs,
        )
        self.voter_address = voter_address


class QuorumNotReachedError(GovernanceError):
    """Proposal never reached quorum."""

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("error_code", "QUORUM_NOT_REACHED")
        super().__init__(message, category=ErrorCategory.OUTCOME, **kwargs)


class ProposalRejectedError(GovernanceError):
    """Votes for did not exceed votes against."""

    def __init__(
        self, message: str, votes_for: int = 0, votes_against: int = 0, **kwargs
    ):
        kwargs.setdefault("error_code", "PROPOSAL_REJECTED")
        super().__init__(
            message,
            category=ErrorCategory.OUTCOME,
            metadata={"for": votes_for, "against": votes_against},
            **kwargs,
        )
        self.votes_for = votes_for
        self.votes_against = votes_against


class UnsupportedActionError(GovernanceError):
    """Action type has no registered handler."""

    def __init__(self, message: str, action_type: Optional[str] = None, **kwargs):
        kwargs.setdefault("error_code", "UNSUPPORTED_ACTION")
        super().__init__(
            message,
            category=ErrorCategory.EXECUTION,
            metadata={"action_type": action_type},
            **kwargs,
        )
        self.action_type = action_type


class ExternalUnavailable(GovernanceError):
    """Chain reader or action backend timed out or failed."""

    def __init__(
        self,
        message: str,
        service: Optional[str] = None,
        operation: Optional[str] = None,
        timeout_duration: Optional[float] = None,
        **kwargs,
    ):
        kwargs.setdefault("error_code", "EXTERNAL_UNAVAILABLE")
        super().__init__(
            message,
            category=ErrorCategory.EXTERNAL,
            severity=ErrorSeverity.HIGH,
            retryable=True,
            **kwargs,
        )
        self.service = service
        self.operation = operation
        self.timeout_duration = timeout_duration

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update(
            {
                "service": self.service,
                "operation": self.operation,
                "timeout_duration": self.timeout_duration,
            }
        )
        return data


class StorageError(GovernanceError):
    """Record store failure."""

    def __init__(
        self,
        message: str,
        storage_type: Optional[str] = None,
        operation: Optional[str] = None,
        **kwargs,
    ):
        kwargs.setdefault("error_code", "STORAGE_FAILURE")
        super().__init__(
            message, category=ErrorCategory.STORAGE, severity=ErrorSeverity.HIGH, **kwargs
        )
        self.storage_type = storage_type
        self.operation = operation

    def to_dict(self) -> Dict[str, Any]:
        """Convert storage error to dictionary."""
        data = super().to_dict()
        data.update({"storage_type": self.storage_type, "operation": self.operation})
        return data


class ConfigurationError(GovernanceError):
    """Configuration error."""

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        config_value: Optional[Any] = None,
        **kwargs,
    ):
        kwargs.setdefault("error_code", "INVALID_CONFIGURATION")
        super().__init__(message, category=ErrorCategory.CONFIGURATION, **kwargs)
        self.config_key = config_key
        self.config_value = config_value

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration error to dictionary."""
        data = super().to_dict()
        data.update(
            {
                "config_key": self.config_key,
                "config_value": str(self.config_value)
                if self.config_value is not None
                else None,
            }
        )
        return data


def create_validation_error(
    field: str, value: Any, expected: Any, message: Optional[str] = None
) -> ValidationError:
    """Create a validation error."""
    if message is None:
        message = f"Invalid value for field '{field}': expected {expected}, got {value}"

    return ValidationError(message=message, field=field, value=value, expected=expected)


def create_timeout_error(
    service: str, operation: str, timeout_duration: float
) -> ExternalUnavailable:
    """Create an ExternalUnavailable error for a timed-out call."""
    return ExternalUnavailable(
        f"{service} operation '{operation}' timed out after {timeout_duration} seconds",
        service=service,
        operation=operation,
        timeout_duration=timeout_duration,
    )
