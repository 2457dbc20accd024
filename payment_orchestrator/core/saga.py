"""
Saga orchestration for multi-step remote provisioning.

Each step commits independently on a remote system. Steps run strictly in
order; a failing step halts the saga, then completed steps are compensated in
reverse order where a compensating action exists.
"""
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

import structlog

logger = structlog.get_logger(__name__)

ForwardAction = Callable[[Dict[str, Any]], Awaitable[Any]]
CompensatingAction = Callable[[Dict[str, Any], Any], Awaitable[None]]


class SagaState(Enum):
    """Saga execution states."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    COMPENSATING = "compensating"
    COMPENSATED = "compensated"
    FAILED = "failed"


class StepStatus(Enum):
    """Step execution status."""

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    COMPENSATED = "compensated"
    COMPENSATION_FAILED = "compensation_failed"


class SagaExecutionError(Exception):
    """Raised when a saga step fails; wraps the step's exception."""

    def __init__(self, saga: "Saga", failed_step: str, cause: Exception):
        super().__init__(f"Saga {saga.name} failed at step {failed_step}: {cause}")
        self.saga = saga
        self.failed_step = failed_step
        self.cause = cause


class SagaStep:
    """
    A single step in a saga.

    Each step has a forward action and an optional compensating action that
    receives the shared context and the forward action's result.
    """

    def __init__(
        self,
        name: str,
        forward_action: ForwardAction,
        compensating_action: Optional[CompensatingAction] = None,
    ):
        self.name = name
        self.forward_action = forward_action
        self.compensating_action = compensating_action
        self.status = StepStatus.PENDING
        self.result: Optional[Any] = None
        self.error: Optional[str] = None

    async def execute(self, context: Dict[str, Any]) -> Any:
        """
        Execute the forward action.

        Raises:
            Exception: Whatever the forward action raised
        """
        logger.info("saga_step_executing", step=self.name)

        try:
            self.result = await self.forward_action(context)
        except Exception as e:
            self.status = StepStatus.FAILED
            self.error = str(e)
            logger.error("saga_step_failed", step=self.name, error=str(e))
            raise

        self.status = StepStatus.COMPLETED
        logger.info("saga_step_completed", step=self.name)
        return self.result

    async def compensate(self, context: Dict[str, Any]) -> None:
        """Execute the compensating action, if the step completed and has one."""
        if self.compensating_action is None:
            logger.warning("saga_step_no_compensation", step=self.name)
            return

        if self.status != StepStatus.COMPLETED:
            logger.info("saga_step_skip_compensation", step=self.name, status=self.status.value)
            return

        logger.info("saga_step_compensating", step=self.name)

        try:
            await self.compensating_action(context, self.result)
        except Exception as e:
            # Left for manual reconciliation; never masks the step failure.
            self.status = StepStatus.COMPENSATION_FAILED
            logger.error("saga_step_compensation_failed", step=self.name, error=str(e))
            return

        self.status = StepStatus.COMPENSATED
        logger.info("saga_step_compensated", step=self.name)


class Saga:
    """An ordered list of steps sharing one context dictionary."""

    def __init__(
        self,
        name: Optional[str] = None,
        saga_id: Optional[str] = None,
        compensate: bool = True,
    ):
        """
        Initialize saga.

        Args:
            name: Optional saga name
            saga_id: Optional saga ID (generated if not provided)
            compensate: Run compensating actions when a step fails
        """
        self.saga_id = saga_id or str(uuid.uuid4())
        self.name = name or "unnamed_saga"
        self.compensate_on_failure = compensate
        self.steps: List[SagaStep] = []
        self.state = SagaState.PENDING
        self.context: Dict[str, Any] = {}
        self.created_at = datetime.now(timezone.utc)
        self.completed_at: Optional[datetime] = None

    def add_step(
        self,
        name: str,
        forward_action: ForwardAction,
        compensating_action: Optional[CompensatingAction] = None,
    ) -> "Saga":
        """Append a step; returns self for chaining."""
        self.steps.append(
            SagaStep(
                name=name,
                forward_action=forward_action,
                compensating_action=compensating_action,
            )
        )
        return self

    async def execute(self) -> Dict[str, Any]:
        """
        Execute all steps in order.

        Each step's result is stored in the context as ``<step name>_result``
        before the next step runs.

        Returns:
            Dict[str, Any]: The shared context

        Raises:
            SagaExecutionError: If any step fails
        """
        logger.info("saga_execution_started", saga_id=self.saga_id, name=self.name)

        self.state = SagaState.IN_PROGRESS
        completed_steps: List[SagaStep] = []

        for step in self.steps:
            try:
                result = await step.execute(self.context)
            except Exception as e:
                logger.error(
                    "saga_execution_failed",
                    saga_id=self.saga_id,
                    step=step.name,
                    error=str(e),
                )
                if self.compensate_on_failure:
                    self.state = SagaState.COMPENSATING
                    await self._compensate(completed_steps)
                    self.state = SagaState.COMPENSATED
                else:
                    self.state = SagaState.FAILED
                self.completed_at = datetime.now(timezone.utc)
                raise SagaExecutionError(self, step.name, e) from e

            completed_steps.append(step)
            self.context[f"{step.name}_result"] = result

        self.state = SagaState.COMPLETED
        self.completed_at = datetime.now(timezone.utc)

        logger.info(
            "saga_completed_successfully",
            saga_id=self.saga_id,
            steps_completed=len(completed_steps),
        )
        return self.context

    async def _compensate(self, completed_steps: List[SagaStep]) -> None:
        """Compensate completed steps in reverse order."""
        logger.info(
            "saga_compensation_started",
            saga_id=self.saga_id,
            steps_to_compensate=len(completed_steps),
        )

        for step in reversed(completed_steps):
            await step.compensate(self.context)

        logger.info("saga_compensation_completed", saga_id=self.saga_id)
