"""
Proposal action dispatch.

Each ``ActionType`` maps to exactly one handler: a parameter check plus the
``ActionBackend`` capability that performs the effect. The registry is
checked against the enum when the executor is built, so an action type
without a handler is caught at start-up rather than at execution time.

Execution is best-effort: every action yields an ``ActionOutcome`` and a
failing action never prevents the next one from running.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping

from ..errors.exceptions import (
    ConfigurationError,
    ExternalUnavailable,
    GovernanceError,
    create_timeout_error,
    create_validation_error,
)
from .core import ActionOutcome, ActionType, ProposalAction
from .interfaces import ActionBackend

logger = logging.getLogger(__name__)


def _require(parameters: Mapping[str, Any], key: str) -> Any:
    value = parameters.get(key)
    if value is None or (isinstance(value, str) and not value.strip()):
        raise create_validation_error(key, value, "a non-empty value")
    return value


def _positive_amount(parameters: Mapping[str, Any]) -> int:
    value = parameters.get("amount")
    if isinstance(value, bool):
        raise create_validation_error("amount", value, "a positive integer")
    try:
        amount = int(value)
    except (TypeError, ValueError):
        raise create_validation_error("amount", value, "a positive integer") from None
    if amount <= 0:
        raise create_validation_error("amount", value, "a positive integer")
    return amount


def _check_transfer(parameters: Mapping[str, Any]) -> None:
    _require(parameters, "recipient")
    _positive_amount(parameters)


def _check_amount(parameters: Mapping[str, Any]) -> None:
    _positive_amount(parameters)


def _check_config(parameters: Mapping[str, Any]) -> None:
    _require(parameters, "key")


def _check_validator(parameters: Mapping[str, Any]) -> None:
    _require(parameters, "validator")


@dataclass(frozen=True)
class ActionHandler:
    """Parameter check plus the backend call for one action type."""

    check: Callable[[Mapping[str, Any]], None]
    perform: Callable[[Dict[str, Any]], Any]


class ActionExecutor:
    """Dispatches proposal actions to the action backend."""

    def __init__(
        self, backend: ActionBackend, action_timeout: float = 30.0, max_workers: int = 4
    ):
        self.backend = backend
        self.action_timeout = action_timeout
        self._handlers: Dict[ActionType, ActionHandler] = {
            ActionType.TRANSFER: ActionHandler(_check_transfer, backend.transfer),
            ActionType.MINT: ActionHandler(_check_amount, backend.mint),
            ActionType.BURN: ActionHandler(_check_amount, backend.burn),
            ActionType.UPDATE_CONFIG: ActionHandler(_check_config, backend.update_config),
            ActionType.ADD_VALIDATOR: ActionHandler(_check_validator, backend.add_validator),
            ActionType.REMOVE_VALIDATOR: ActionHandler(
                _check_validator, backend.remove_validator
            ),
        }
        missing = [t.value for t in ActionType if t not in self._handlers]
        if missing:
            raise ConfigurationError(
                f"No handler registered for action types: {', '.join(missing)}"
            )
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="lunadao-action"
        )

    @property
    def supported_types(self) -> List[str]:
        return [t.value for t in self._handlers]

    def validate(self, action: ProposalAction) -> ActionType:
        """Check an action's type and parameters without running it."""
        action_type = ActionType.parse(action.action_type)
        self._handlers[action_type].check(action.parameters or {})
        return action_type

    def execute(self, action: ProposalAction) -> ActionOutcome:
        """Run one action and report its outcome. Never raises GovernanceError."""
        try:
            action_type = self.validate(action)
            result = self._perform(action_type, dict(action.parameters or {}))
        except GovernanceError as e:
            logger.warning(
                "Action %s failed: %s",
                action.action_type,
                e.message,
                extra={"action_type": action.action_type, "error_code": e.error_code},
            )
            return ActionOutcome(
                action_type=str(action.action_type),
                success=False,
                error=e.message,
                error_type=type(e).__name__,
            )

        logger.info("Action %s executed: %s", action_type.value, result)
        return ActionOutcome(action_type=action_type.value, success=True, result=result)

    def execute_all(self, actions: List[ProposalAction]) -> List[ActionOutcome]:
        """Run every action in order; one outcome per action."""
        return [self.execute(action) for action in actions]

    def _perform(self, action_type: ActionType, parameters: Dict[str, Any]) -> Any:
        handler = self._handlers[action_type]
        future = self._executor.submit(handler.perform, parameters)
        try:
            return future.result(timeout=self.action_timeout)
        except FutureTimeoutError:
            future.cancel()
            raise create_timeout_error(
                "action_backend", action_type.value, self.action_timeout
            ) from None
        except GovernanceError:
            raise
        except Exception as e:
            raise ExternalUnavailable(
                f"action_backend operation '{action_type.value}' failed: {e}",
                service="action_backend",
                operation=action_type.value,
                cause=e,
            ) from e

    def shutdown(self, wait: bool = False) -> None:
        self._executor.shutdown(wait=wait)
