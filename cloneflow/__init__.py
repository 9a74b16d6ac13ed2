"""
CloneFlow - deterministic operation engine for in-silico cloning workflows.
"""

__version__ = "0.1.0"

from .config import EngineConfig, EngineParameters
from .core.executor import Engine, capabilities
from .core.operations import OpResult, Workflow, parse_operation
from .core.state import ProjectState
from .errors import EngineError, ErrorCode, WorkflowError

__all__ = [
    "Engine",
    "EngineConfig",
    "EngineParameters",
    "EngineError",
    "ErrorCode",
    "OpResult",
    "ProjectState",
    "Workflow",
    "WorkflowError",
    "capabilities",
    "parse_operation",
    "__version__",
]
