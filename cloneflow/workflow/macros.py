"""
Macro templates.

A macro is a named script of ``op {...}`` lines with typed input and output
ports. Running one is a three-step pipeline:

1. preflight: bound values are checked against the port kinds and the
   current project, with no side effects;
2. expansion: ``${name}`` placeholders are replaced, JSON-escaped inside
   string literals and JSON-encoded elsewhere, and every line is parsed;
3. execution through the WorkflowRunner, after which one MacroInstance is
   appended to the lineage (ok, failed or cancelled).
"""

import json
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from ..core.executor import Engine
from ..core.lineage import MacroInstance
from ..core.operations import Operation, Workflow, parse_operation
from ..core.progress import CancellationToken
from ..errors import EngineError, OperationCancelled, WorkflowError, invalid_input, io_error, not_found
from ..transforms.extraction import SequenceAnchor
from .runner import StepResult, WorkflowRunner, emitted_op_ids

logger = logging.getLogger(__name__)

PORT_KINDS = (
    'sequence', 'container', 'candidate_set', 'guide_set',
    'string', 'number', 'bool', 'path', 'sequence_anchor',
)

_PLACEHOLDER = re.compile(r'\$\{([A-Za-z_][A-Za-z0-9_]*)\}')
_NAME = re.compile(r'^[A-Za-z_][A-Za-z0-9_]*$')


@dataclass
class MacroPort:
    name: str
    kind: str
    required: bool = True
    default: Any = None
    description: str = ''

    def __post_init__(self):
        if not _NAME.match(self.name or ''):
            raise invalid_input(f"Invalid port name '{self.name}'")
        if self.kind not in PORT_KINDS:
            raise invalid_input(
                f"Port '{self.name}' has unknown kind '{self.kind}'; expected one of {', '.join(PORT_KINDS)}"
            )

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> 'MacroPort':
        return cls(
            name=d['name'],
            kind=d['kind'],
            required=bool(d.get('required', 'default' not in d)),
            default=d.get('default'),
            description=d.get('description', ''),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'kind': self.kind,
            'required': self.required,
            'default': self.default,
            'description': self.description,
        }


@dataclass
class MacroTemplate:
    """Parameterized operation script with typed ports."""
    name: str
    script: str
    input_ports: List[MacroPort] = field(default_factory=list)
    output_ports: List[MacroPort] = field(default_factory=list)
    description: str = ''

    def __post_init__(self):
        if not self.name or not self.name.strip():
            raise invalid_input("Macro template name must not be empty")
        names = [p.name for p in self.ports]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise invalid_input(f"Macro '{self.name}' declares duplicate ports: {', '.join(duplicates)}")

    @property
    def ports(self) -> List[MacroPort]:
        return self.input_ports + self.output_ports

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> 'MacroTemplate':
        try:
            return cls(
                name=d['name'],
                script=d['script'],
                input_ports=[MacroPort.from_dict(p) for p in d.get('input_ports') or []],
                output_ports=[MacroPort.from_dict(p) for p in d.get('output_ports') or []],
                description=d.get('description', ''),
            )
        except (KeyError, TypeError) as e:
            raise invalid_input(f"Invalid macro template: {e}")

    @classmethod
    def from_yaml(cls, path: Path) -> 'MacroTemplate':
        """Load a macro template from YAML file."""
        try:
            with open(path) as f:
                data = yaml.safe_load(f) or {}
        except OSError as e:
            raise io_error(f"Cannot read macro template {path}: {e}")
        except yaml.YAMLError as e:
            raise invalid_input(f"Invalid YAML in macro template {path}: {e}")
        return cls.from_dict(data)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'description': self.description,
            'input_ports': [p.to_dict() for p in self.input_ports],
            'output_ports': [p.to_dict() for p in self.output_ports],
            'script': self.script,
        }


def _check_value(port: MacroPort, value: Any):
    kind = port.kind
    if kind in ('sequence', 'container', 'candidate_set', 'guide_set', 'string', 'path'):
        if not isinstance(value, str):
            raise invalid_input(f"Port '{port.name}' ({kind}) expects a string, got {value!r}")
        if kind != 'string' and not value.strip():
            raise invalid_input(f"Port '{port.name}' ({kind}) must not be blank")
    if kind == 'number' and (isinstance(value, bool) or not isinstance(value, (int, float))):
        raise invalid_input(f"Port '{port.name}' expects a number, got {value!r}")
    if kind == 'bool' and not isinstance(value, bool):
        raise invalid_input(f"Port '{port.name}' expects true or false, got {value!r}")
    if kind == 'sequence_anchor':
        SequenceAnchor.from_dict(value)


def _check_input_exists(port: MacroPort, value: str, engine: Engine):
    state = engine.state
    if port.kind == 'sequence' and value not in state.sequences:
        raise not_found(f"Port '{port.name}': sequence '{value}' not found")
    if port.kind == 'container' and state.container_state.get(value) is None:
        raise not_found(f"Port '{port.name}': container '{value}' not found")
    if port.kind == 'candidate_set' and value not in state.candidate_sets:
        raise not_found(f"Port '{port.name}': candidate set '{value}' not found")


def preflight(template: MacroTemplate, bindings: Dict[str, Any], engine: Engine) -> Dict[str, Any]:
    """
    Validate bindings against the template's ports.

    Input ports that reference project objects must resolve; output ports
    only need a well-typed name. Defaults fill unbound optional ports.

    Returns:
        Complete bindings, one value per port

    Raises:
        EngineError: InvalidInput or NotFound; the project is untouched
    """
    bindings = dict(bindings or {})
    known = {p.name for p in template.ports}
    unknown = sorted(set(bindings) - known)
    if unknown:
        raise invalid_input(f"Macro '{template.name}' has no port(s) named {', '.join(unknown)}")

    input_names = {p.name for p in template.input_ports}
    resolved: Dict[str, Any] = {}
    for port in template.ports:
        if port.name in bindings:
            value = bindings[port.name]
        elif port.default is not None:
            value = port.default
        elif port.required:
            raise invalid_input(f"Macro '{template.name}' requires a binding for port '{port.name}'")
        else:
            continue
        _check_value(port, value)
        if port.name in input_names:
            _check_input_exists(port, value, engine)
        resolved[port.name] = value
    return resolved


def substitute(script: str, values: Dict[str, Any]) -> str:
    """
    Replace ``${name}`` placeholders.

    Inside a JSON string literal the value is inserted as escaped text;
    elsewhere it is inserted as a JSON value.

    Examples:
        >>> substitute('op {"TopKCandidateSet": {"k": ${k}}}', {"k": 3})
        'op {"TopKCandidateSet": {"k": 3}}'
    """
    out: List[str] = []
    in_string = False
    i = 0
    while i < len(script):
        ch = script[i]
        if ch == '$':
            m = _PLACEHOLDER.match(script, i)
            if m:
                name = m.group(1)
                if name not in values:
                    raise invalid_input(f"Unbound macro parameter '${{{name}}}'")
                value = values[name]
                if in_string:
                    text = value if isinstance(value, str) else json.dumps(value)
                    out.append(json.dumps(text)[1:-1])
                else:
                    out.append(json.dumps(value))
                i = m.end()
                continue
        if ch == '"':
            in_string = not in_string
        elif ch == '\\' and in_string and i + 1 < len(script):
            out.append(script[i:i + 2])
            i += 2
            continue
        elif ch == '\n':
            in_string = False
        out.append(ch)
        i += 1
    return ''.join(out)


def parse_script(text: str) -> List[Operation]:
    """Parse ``op {...}`` lines; blank lines and ``#`` comments are skipped."""
    ops = []
    for lineno, raw in enumerate(text.splitlines(), 1):
        line = raw.strip()
        if not line or line.startswith('#'):
            continue
        if not line.startswith('op '):
            raise invalid_input(f"Line {lineno}: expected 'op {{...}}', got '{line[:40]}'")
        try:
            data = json.loads(line[3:])
        except json.JSONDecodeError as e:
            raise invalid_input(f"Line {lineno}: invalid operation JSON: {e}")
        try:
            ops.append(parse_operation(data))
        except EngineError as e:
            raise invalid_input(f"Line {lineno}: {e.message}")
    if not ops:
        raise invalid_input("Macro script contains no operations")
    return ops


@dataclass
class MacroRun:
    instance: MacroInstance
    steps: List[StepResult] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.instance.status == 'ok'

    def to_dict(self) -> Dict[str, Any]:
        return {'instance': self.instance.to_dict(), 'steps': [s.to_dict() for s in self.steps]}


def _status_for(error: EngineError) -> str:
    cause = error.cause if isinstance(error, WorkflowError) and error.cause is not None else error
    return 'cancelled' if isinstance(cause, OperationCancelled) else 'failed'


class MacroRunner:
    """Expands and runs macro templates, recording one MacroInstance per run."""

    def __init__(self, engine: Engine):
        self.engine = engine

    def run(
        self,
        template: MacroTemplate,
        bindings: Optional[Dict[str, Any]] = None,
        run_id: Optional[str] = None,
        transactional: bool = False,
        token: Optional[CancellationToken] = None,
    ) -> MacroRun:
        """
        Run a macro.

        Returns:
            MacroRun; a non-transactional failure is reported through the
            instance status and the last step

        Raises:
            EngineError: Preflight or script errors (nothing recorded)
            WorkflowError: Transactional failure, after rollback; the failed
                instance is still recorded
        """
        values = preflight(template, bindings, self.engine)
        ops = parse_script(substitute(template.script, values))

        state = self.engine.state
        instance_id = state.next_macro_instance_id()
        workflow = Workflow(run_id=run_id or instance_id, ops=ops)
        inputs = {p.name: values[p.name] for p in template.input_ports if p.name in values}
        logger.info(f"Macro '{template.name}' ({instance_id}): {len(ops)} ops")

        try:
            steps = WorkflowRunner(self.engine).run(workflow, transactional=transactional, token=token)
        except WorkflowError as e:
            # The rollback restored the state as of just after instance_id was assigned
            instance = MacroInstance(instance_id, template.name, workflow.run_id, inputs)
            instance.finish(_status_for(e), e.to_dict())
            state.lineage.macro_instances.append(instance)
            raise

        instance = MacroInstance(instance_id, template.name, workflow.run_id, inputs,
                                 emitted_op_ids=emitted_op_ids(steps))
        failed = next((s for s in steps if not s.ok), None)
        if failed is not None:
            instance.finish(_status_for(failed.error), failed.error.to_dict())
        else:
            missing = self._missing_outputs(template, values)
            if missing:
                instance.finish('failed', invalid_input(
                    f"Macro '{template.name}' did not produce output(s): {', '.join(missing)}"
                ).to_dict())
            else:
                instance.bound_outputs = {p.name: values[p.name] for p in template.output_ports
                                          if p.name in values}
                instance.finish('ok')
        self.engine.state.lineage.macro_instances.append(instance)
        logger.info(f"Macro '{template.name}' ({instance_id}) finished: {instance.status}")
        return MacroRun(instance, steps)

    def _missing_outputs(self, template: MacroTemplate, values: Dict[str, Any]) -> List[str]:
        state = self.engine.state
        missing = []
        for port in template.output_ports:
            value = values.get(port.name)
            if value is None:
                continue
            if port.kind == 'sequence' and value not in state.sequences:
                missing.append(port.name)
            elif port.kind == 'container' and state.container_state.get(value) is None:
                missing.append(port.name)
            elif port.kind == 'candidate_set' and value not in state.candidate_sets:
                missing.append(port.name)
        return missing
