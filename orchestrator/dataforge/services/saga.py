"""
Saga - ordered steps with reverse-order compensation.

Before a step's action runs, its compensation is registered. When a later step
(or the step itself) fails, compensate() walks the registered entries backward
and fires each compensation. Compensation errors are collected as
CompensationFailure and logged; they never replace the original error.

A failing step stays registered because its action may have taken effect before
failing (e.g. a timeout after the API server accepted the object). Pass
`compensate_failed` to opt out for errors proving the action had no effect on
resources we own, such as a 409 on create.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, List, Optional

from .errors import CompensationFailure

logger = logging.getLogger(__name__)


class StepStatus(str, Enum):
    PENDING = "pending"        # Registered, action running
    CONFIRMED = "confirmed"    # Action succeeded
    FAILED = "failed"          # Action raised
    COMPENSATED = "compensated"
    COMPENSATION_FAILED = "compensation_failed"


@dataclass
class SagaStep:
    name: str
    compensation: Optional[Callable[[], Awaitable[Any]]]
    status: StepStatus = StepStatus.PENDING


class Saga:
    """
    Explicit saga for multi-resource creation.

    Usage:
        saga = Saga("create shop-db")
        try:
            await saga.run_step("service", create_service, compensation=delete_service)
            ...
        except Exception:
            await saga.compensate()
            raise
    """

    def __init__(self, name: str):
        self.name = name
        self.steps: List[SagaStep] = []

    async def run_step(
        self,
        name: str,
        action: Callable[[], Awaitable[Any]],
        compensation: Optional[Callable[[], Awaitable[Any]]] = None,
        compensate_failed: Optional[Callable[[BaseException], bool]] = None
    ) -> Any:
        """
        Register `compensation`, then run `action`.

        Args:
            name: Step name (for logs)
            action: Coroutine function performing the step
            compensation: Coroutine function undoing the step, or None
            compensate_failed: Decides whether a failed action still needs its
                compensation; defaults to always

        Returns:
            The action's result
        """
        step = SagaStep(name=name, compensation=compensation)
        self.steps.append(step)
        try:
            result = await action()
        except Exception as e:
            step.status = StepStatus.FAILED
            if compensate_failed is not None and not compensate_failed(e):
                # The action provably did nothing we own
                step.compensation = None
            raise
        step.status = StepStatus.CONFIRMED
        return result

    async def compensate(self) -> List[CompensationFailure]:
        """
        Run registered compensations in reverse order.

        Returns:
            Compensation failures, already logged
        """
        failures: List[CompensationFailure] = []
        for step in reversed(self.steps):
            if step.compensation is None or step.status not in (StepStatus.CONFIRMED, StepStatus.FAILED):
                continue
            try:
                await step.compensation()
                step.status = StepStatus.COMPENSATED
                logger.info(f"[SAGA] {self.name}: compensated step '{step.name}'")
            except Exception as e:
                step.status = StepStatus.COMPENSATION_FAILED
                failure = CompensationFailure(step.name, e)
                failures.append(failure)
                logger.error(f"[SAGA] {self.name}: {failure}")

        if failures:
            logger.warning(f"[SAGA] {self.name}: rollback finished with {len(failures)} failed step(s)")
        return failures
