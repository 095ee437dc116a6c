"""
Saga Runner

A multi-step write with no atomic commit across steps.

DESIGN DECISION: Each step is named and runs at most once successfully.
When a step fails the saga stops there, remembers which step failed, and
retry() resumes from that step. Steps that already succeeded are never
re-run, so a retry cannot double-apply a committed write.

There is no compensation: recovery is always "retry the failed step".
Every step outcome is audited under one correlation id.
"""

import inspect
from typing import Any, Awaitable, Callable, NamedTuple, Optional, Union
from uuid import UUID, uuid4

import structlog

from gossip_couple.audit.logger import AuditLogger, create_correlation_id

logger = structlog.get_logger(__name__)


class SagaStepError(Exception):
    """A saga step failed. The saga can be resumed with retry()."""

    def __init__(self, saga: str, step: str, cause: BaseException):
        self.saga = saga
        self.step = step
        self.cause = cause
        super().__init__(f"{saga} failed at step {step}: {cause}")


StepFn = Callable[[], Union[Any, Awaitable[Any]]]


class SagaStep(NamedTuple):
    name: str
    run: StepFn


class Saga:
    """
    Ordered named steps with resume-on-retry.

    Subclasses build their steps in __init__ and call super().__init__.
    """

    name = "saga"

    def __init__(
        self,
        steps: list[SagaStep],
        audit_logger: Optional[AuditLogger] = None,
        correlation_id: Optional[UUID] = None,
    ):
        self.saga_id = str(uuid4())
        self.correlation_id = correlation_id or create_correlation_id()
        self._steps = steps
        self._audit = audit_logger
        self.completed_steps: list[str] = []
        self.failed_step: Optional[str] = None
        self.error: Optional[str] = None
        self.results: dict[str, Any] = {}

    @property
    def step_names(self) -> list[str]:
        return [s.name for s in self._steps]

    @property
    def done(self) -> bool:
        return len(self.completed_steps) == len(self._steps)

    async def run(self) -> "Saga":
        """
        Run every step that has not yet succeeded, in order.

        Raises:
            SagaStepError: on the first failing step
        """
        if self._audit and not self.completed_steps and self.failed_step is None:
            await self._audit.log_saga_started(
                self.name, self.saga_id, self.step_names, correlation_id=self.correlation_id
            )

        for step in self._steps:
            if step.name in self.completed_steps:
                continue
            try:
                result = step.run()
                if inspect.isawaitable(result):
                    result = await result
            except Exception as e:
                self.failed_step = step.name
                self.error = str(e)
                logger.warning("saga_step_failed", saga=self.name, saga_id=self.saga_id, step=step.name, error=str(e))
                if self._audit:
                    await self._audit.log_saga_step(
                        self.name, self.saga_id, step.name, False,
                        correlation_id=self.correlation_id,
                        error_message=str(e),
                    )
                raise SagaStepError(self.name, step.name, e) from e

            self.results[step.name] = result
            self.completed_steps.append(step.name)
            self.failed_step = None
            self.error = None
            if self._audit:
                await self._audit.log_saga_step(
                    self.name, self.saga_id, step.name, True,
                    correlation_id=self.correlation_id,
                )

        if self._audit:
            await self._audit.log_saga_completed(self.name, self.saga_id, self.correlation_id)
        return self

    async def retry(self) -> "Saga":
        """Resume from the failed step. A finished saga is left as is."""
        if self.done:
            return self
        return await self.run()
