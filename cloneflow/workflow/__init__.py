"""
Workflow and macro execution on top of the operation executor.
"""

from .macros import MacroPort, MacroRun, MacroRunner, MacroTemplate, parse_script, preflight, substitute
from .runner import StepResult, WorkflowRunner, apply_workflow

__all__ = [
    'MacroPort',
    'MacroRun',
    'MacroRunner',
    'MacroTemplate',
    'parse_script',
    'preflight',
    'substitute',
    'StepResult',
    'WorkflowRunner',
    'apply_workflow',
]
