"""
Business-action capability registry.

Maps an ``actionKind`` to an async callable and turns every outcome of an
invocation, including timeouts and raised exceptions, into an ActionResult.
"""

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Mapping, Optional, Union

from flow_engine.core.models import ActionResult

logger = logging.getLogger(__name__)

# An action receives (action_parameters, run_variables). It may return an
# ActionResult, a dict of result variables, or None.
ActionCallable = Callable[
    [dict[str, Any], dict[str, Any]],
    Awaitable[Union[ActionResult, dict[str, Any], None]],
]


class ActionTimeoutError(Exception):
    """Raised when an action exceeds its timeout."""


class ActionRegistry:
    """
    Registry of business-action capabilities.

    Usage:
        registry = ActionRegistry()

        @registry.action("sendReminder")
        async def send_reminder(parameters, variables):
            ...
            return {"reminder_sent": True}

        result = await registry.invoke("sendReminder", {}, {})
    """

    # Errors that will fail the same way on every attempt
    NON_RETRYABLE_ERRORS: tuple[type[Exception], ...] = (
        ValueError,
        TypeError,
        KeyError,
        AttributeError,
    )

    def __init__(self, timeout: Optional[float] = None):
        self.timeout = timeout
        self._actions: dict[str, ActionCallable] = {}

    def register(self, action_kind: str, func: ActionCallable) -> None:
        """Register an action implementation, replacing any previous one."""
        if action_kind in self._actions:
            logger.warning(f"Replacing action implementation for '{action_kind}'")
        self._actions[action_kind] = func

    def action(self, action_kind: str) -> Callable[[ActionCallable], ActionCallable]:
        """Decorator form of register()."""

        def decorator(func: ActionCallable) -> ActionCallable:
            self.register(action_kind, func)
            return func

        return decorator

    def unregister(self, action_kind: str) -> None:
        self._actions.pop(action_kind, None)

    def has_action(self, action_kind: str) -> bool:
        return action_kind in self._actions

    @property
    def action_kinds(self) -> list[str]:
        return sorted(self._actions)

    async def invoke(
        self,
        action_kind: str,
        action_parameters: Mapping[str, Any],
        run_variables: Mapping[str, Any],
    ) -> ActionResult:
        """
        Invoke an action once.

        Never raises for action failures; they are described by the result.

        Args:
            action_kind: Registered capability identifier
            action_parameters: Static arguments from the node config
            run_variables: Snapshot of the run's variables

        Returns:
            ActionResult
        """
        func = self._actions.get(action_kind)
        if func is None:
            logger.error(f"No implementation registered for action '{action_kind}'")
            return ActionResult(
                success=False,
                retryable_error=False,
                error_message=f"Unknown action kind: {action_kind}",
                error_type="UnknownActionKind",
            )

        started = time.monotonic()
        try:
            if self.timeout is not None:
                async with asyncio.timeout(self.timeout):
                    outcome = await func(dict(action_parameters), dict(run_variables))
            else:
                outcome = await func(dict(action_parameters), dict(run_variables))
        except asyncio.TimeoutError:
            logger.error(f"Action '{action_kind}' timed out after {self.timeout}s")
            return ActionResult(
                success=False,
                retryable_error=True,
                error_message=f"Action timed out after {self.timeout} seconds",
                error_type=ActionTimeoutError.__name__,
                duration_ms=self._elapsed_ms(started),
            )
        except Exception as e:
            logger.error(f"Action '{action_kind}' raised: {e}", exc_info=True)
            return ActionResult(
                success=False,
                retryable_error=self._is_retryable_error(e),
                error_message=str(e),
                error_type=type(e).__name__,
                duration_ms=self._elapsed_ms(started),
            )

        return self._to_result(outcome, self._elapsed_ms(started))

    def _to_result(
        self,
        outcome: Any,
        duration_ms: int,
    ) -> ActionResult:
        if isinstance(outcome, ActionResult):
            if not outcome.duration_ms:
                return outcome.model_copy(update={"duration_ms": duration_ms})
            return outcome
        if outcome is None or isinstance(outcome, Mapping):
            return ActionResult(
                success=True,
                result_variables=dict(outcome or {}),
                duration_ms=duration_ms,
            )
        # A broken implementation returns the same thing on every attempt
        return ActionResult(
            success=False,
            retryable_error=False,
            error_message=(
                f"Action returned {type(outcome).__name__}; expected a dict, "
                "an ActionResult or None"
            ),
            error_type="InvalidActionResult",
            duration_ms=duration_ms,
        )

    def _is_retryable_error(self, error: Exception) -> bool:
        """Determine if an error is retryable."""
        return not isinstance(error, self.NON_RETRYABLE_ERRORS)

    @staticmethod
    def _elapsed_ms(started: float) -> int:
        return int((time.monotonic() - started) * 1000)
