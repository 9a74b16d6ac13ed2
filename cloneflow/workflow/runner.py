"""
Workflow runner.

Applies the operations of a Workflow in order through the Engine. In
non-transactional mode every attempted operation yields one StepResult and
the first failure stops the run; in transactional mode the state is
restored to its pre-workflow value and a single WorkflowError is raised.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from ..core.executor import Engine
from ..core.operations import OpResult, Workflow
from ..core.progress import CancellationToken
from ..errors import EngineError, WorkflowError

logger = logging.getLogger(__name__)


@dataclass
class StepResult:
    """Outcome of one attempted workflow operation."""
    index: int
    operation: str
    result: Optional[OpResult] = None
    error: Optional[EngineError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {'index': self.index, 'operation': self.operation, 'ok': self.ok}
        if self.result is not None:
            d['result'] = self.result.to_dict()
        if self.error is not None:
            d['error'] = self.error.to_dict()
        return d


class WorkflowRunner:
    """Runs workflows against one engine."""

    def __init__(self, engine: Engine):
        self.engine = engine

    def run(
        self,
        workflow,
        transactional: bool = False,
        token: Optional[CancellationToken] = None,
    ) -> List[StepResult]:
        """
        Run a workflow.

        Args:
            workflow: Workflow or its JSON form {"run_id", "ops"}
            transactional: Roll back everything if any operation fails
            token: Cancellation token shared by all operations

        Returns:
            One StepResult per attempted operation; when an operation fails
            (non-transactional) it is the last entry and carries the error

        Raises:
            WorkflowError: Transactional run failed; state is unchanged
        """
        if not isinstance(workflow, Workflow):
            workflow = Workflow.from_dict(workflow)
        snapshot = self.engine.state.snapshot() if transactional else None
        steps: List[StepResult] = []
        total = len(workflow.ops)
        logger.info(f"Running workflow '{workflow.run_id}' ({total} ops, transactional={transactional})")

        for i, op in enumerate(workflow.ops):
            try:
                result = self.engine.apply(op, token=token, run_id=workflow.run_id)
            except EngineError as e:
                logger.error(f"Workflow '{workflow.run_id}' op {i + 1}/{total} ({op.tag()}) failed: {e}")
                if transactional:
                    self.engine.state.restore(snapshot)
                    raise WorkflowError(
                        f"Workflow '{workflow.run_id}' failed at op {i} ({op.tag()}): {e.message}; "
                        f"all changes rolled back",
                        failed_index=i,
                        cause=e,
                    )
                steps.append(StepResult(i, op.tag(), error=e))
                break
            steps.append(StepResult(i, op.tag(), result=result))

        logger.info(f"Workflow '{workflow.run_id}' finished: {sum(s.ok for s in steps)}/{total} ops committed")
        return steps


def apply_workflow(engine: Engine, workflow, transactional: bool = False,
                   token: Optional[CancellationToken] = None) -> List[StepResult]:
    return WorkflowRunner(engine).run(workflow, transactional=transactional, token=token)


def emitted_op_ids(steps: List[StepResult]) -> List[str]:
    return [s.result.op_id for s in steps if s.result is not None]
