"""
Compensation stack for the resize saga.

Every step that creates or mutates a provider resource registers its undo
right where the mutation happens. When the workflow ends the stack is
unwound once, newest first, running either the failure or the success side
of each registered action.
"""

import logging
from dataclasses import dataclass
from typing import Callable, List, Optional

logger = logging.getLogger(__name__)

Action = Callable[[], None]


@dataclass
class CompensationAction:
    """A pair of optional actions bound to one resource mutation."""

    description: str
    on_failure: Optional[Action] = None
    on_success: Optional[Action] = None

    def select(self, failed: bool) -> Optional[Action]:
        return self.on_failure if failed else self.on_success


@dataclass
class CompensationOutcome:
    """What happened to one action during an unwind."""

    description: str
    phase: str  # "failure" or "success"
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class CompensationStack:
    """Ordered list of compensations, executed in reverse registration order."""

    def __init__(self):
        self._actions: List[CompensationAction] = []
        self._unwound = False

    def __len__(self) -> int:
        return len(self._actions)

    @property
    def actions(self) -> List[CompensationAction]:
        return list(self._actions)

    def register(
        self,
        description: str,
        on_failure: Optional[Action] = None,
        on_success: Optional[Action] = None,
    ) -> CompensationAction:
        """
        Register compensations for a mutation that just happened.

        Args:
            description: Human readable name used in logs
            on_failure: Runs if the workflow fails
            on_success: Runs if the workflow succeeds

        Returns:
            The registered CompensationAction
        """
        if self._unwound:
            raise RuntimeError("Cannot register on a stack that was already unwound")
        action = CompensationAction(
            description=description, on_failure=on_failure, on_success=on_success
        )
        self._actions.append(action)
        logger.debug(f"Registered compensation: {description}")
        return action

    def always(self, description: str, action: Action) -> CompensationAction:
        """Register a cleanup that runs whatever the outcome."""
        return self.register(description, on_failure=action, on_success=action)

    def unwind(self, failed: bool) -> List[CompensationOutcome]:
        """
        Run the registered compensations, newest first.

        Errors raised by an action are logged and recorded; they never stop
        the remaining actions and are never re-raised.

        Args:
            failed: Whether the workflow failed

        Returns:
            One CompensationOutcome per action that had something to run
        """
        if self._unwound:
            raise RuntimeError("Compensation stack was already unwound")
        self._unwound = True

        phase = "failure" if failed else "success"
        outcomes: List[CompensationOutcome] = []
        if self._actions:
            logger.info(
                f"Unwinding {len(self._actions)} compensation(s) after workflow {phase}"
            )

        for action in reversed(self._actions):
            fn = action.select(failed)
            if fn is None:
                continue
            logger.info(f"  compensation ({phase}): {action.description}")
            try:
                fn()
                outcomes.append(CompensationOutcome(action.description, phase))
            except Exception as e:
                logger.error(f"  compensation FAILED: {action.description}: {e}")
                outcomes.append(
                    CompensationOutcome(action.description, phase, error=str(e))
                )

        return outcomes
