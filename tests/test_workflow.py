"""Tests for cloneflow.workflow module."""

import pytest
from cloneflow.core.executor import Engine
from cloneflow.core.operations import Workflow
from cloneflow.core.progress import CancellationToken
from cloneflow.core.state import ProjectState
from cloneflow.errors import EngineError, ErrorCode, OperationCancelled, WorkflowError
from cloneflow.workflow.macros import MacroPort, MacroRunner, MacroTemplate, parse_script, preflight, substitute
from cloneflow.workflow.runner import WorkflowRunner, emitted_op_ids


PGEX = "GGATCCCCGGGAATTC" + "ACGTTGCA" * 617

SCRIPT = """
# cut the vector and keep the backbone
op {"Digest": {"input": "${vector}", "enzymes": ["${enzyme}", "EcoRI"], "output_prefix": "frag"}}

op {"Branch": {"input": "frag_2", "output_id": "${backbone}"}}
"""


@pytest.fixture
def engine():
    engine = Engine(ProjectState())
    engine.apply({"LoadSequence": {"seq_id": "pgex", "bases": PGEX, "topology": "circular"}})
    return engine


def template(**overrides):
    data = {
        "name": "cut_backbone",
        "script": SCRIPT,
        "input_ports": [
            {"name": "vector", "kind": "sequence"},
            {"name": "enzyme", "kind": "string", "default": "BamHI"},
        ],
        "output_ports": [{"name": "backbone", "kind": "sequence"}],
    }
    data.update(overrides)
    return MacroTemplate.from_dict(data)


def failing_ops():
    return [
        {"Branch": {"input": "pgex"}},
        {"Digest": {"input": "missing", "enzymes": ["EcoRI"]}},
        {"Branch": {"input": "pgex"}},
    ]


class TestWorkflowRunner:
    """Test workflow execution."""

    def test_success(self, engine):
        """Test every op runs and carries the workflow run id."""
        steps = WorkflowRunner(engine).run({"run_id": "wf-1", "ops": [
            {"Digest": {"input": "pgex", "enzymes": ["BamHI", "EcoRI"]}},
            {"Branch": {"input": "pgex_digest_2"}},
        ]})
        assert [s.ok for s in steps] == [True, True]
        assert emitted_op_ids(steps) == ["op-2", "op-3"]
        run_ids = {e.run_id for e in engine.state.lineage.edges}
        assert run_ids == {"wf-1"}

    def test_non_transactional_stops_at_failure(self, engine):
        """Test results up to and including the failed op are returned."""
        steps = WorkflowRunner(engine).run({"run_id": "wf", "ops": failing_ops()})
        assert len(steps) == 2
        assert steps[0].ok
        assert steps[1].error.code == ErrorCode.NOT_FOUND
        assert "pgex_branch" in engine.state.sequences
        assert steps[1].to_dict()["ok"] is False

    def test_transactional_rollback(self, engine):
        """Test a transactional failure restores the exact prior state."""
        before = engine.state.to_json()
        with pytest.raises(WorkflowError) as exc:
            WorkflowRunner(engine).run({"run_id": "wf", "ops": failing_ops()}, transactional=True)
        assert exc.value.failed_index == 1
        assert exc.value.cause.code == ErrorCode.NOT_FOUND
        assert exc.value.code == ErrorCode.NOT_FOUND
        assert exc.value.to_dict()["failed_index"] == 1
        assert engine.state.to_json() == before

    def test_transactional_cancellation(self, engine):
        """Test cancellation inside a transactional workflow rolls back."""
        before = engine.state.to_json()
        token = CancellationToken(lambda stage, done, total: False)
        workflow = Workflow.from_dict({"run_id": "wf", "ops": [
            {"Branch": {"input": "pgex"}},
            {"Digest": {"input": "pgex", "enzymes": ["EcoRI"]}},
        ]})
        with pytest.raises(WorkflowError) as exc:
            WorkflowRunner(engine).run(workflow, transactional=True, token=token)
        assert isinstance(exc.value.cause, OperationCancelled)
        assert engine.state.to_json() == before

    def test_invalid_workflow(self, engine):
        """Test malformed workflow documents are InvalidInput."""
        with pytest.raises(EngineError):
            WorkflowRunner(engine).run({"run_id": "wf", "ops": "Digest"})
        with pytest.raises(EngineError):
            WorkflowRunner(engine).run({"run_id": "wf", "ops": [{"Nope": {}}]})


class TestSubstitution:
    """Test placeholder expansion and script parsing."""

    def test_string_and_value_context(self):
        """Test values are escaped in strings and JSON-encoded elsewhere."""
        script = 'op {"A": {"s": "${x}", "n": ${n}, "l": ${l}}}'
        out = substitute(script, {"x": 'a"b', "n": 3, "l": ["p", "q"]})
        assert out == 'op {"A": {"s": "a\\"b", "n": 3, "l": ["p", "q"]}}'

    def test_number_inside_string(self):
        """Test non-string values inside a literal become text."""
        assert substitute('"${n}bp"', {"n": 40}) == '"40bp"'

    def test_unbound(self):
        """Test unbound placeholders fail."""
        with pytest.raises(EngineError):
            substitute('"${missing}"', {})

    def test_parse_script(self):
        """Test comments and blank lines are skipped."""
        ops = parse_script(substitute(SCRIPT, {"vector": "v", "enzyme": "BamHI", "backbone": "bb"}))
        assert [op.tag() for op in ops] == ["Digest", "Branch"]
        assert ops[1].output_id == "bb"

    @pytest.mark.parametrize("text", ["", "# only a comment", "run {}", 'op {"Digest": {', 'op {"Nope": {}}'])
    def test_parse_errors(self, text):
        """Test malformed scripts are InvalidInput."""
        with pytest.raises(EngineError) as exc:
            parse_script(text)
        assert exc.value.code == ErrorCode.INVALID_INPUT


class TestMacroTemplate:
    """Test template and port validation."""

    def test_ports(self):
        """Test optional ports with defaults."""
        t = template()
        assert [p.name for p in t.ports] == ["vector", "enzyme", "backbone"]
        assert t.input_ports[1].required is False

    def test_invalid_port_kind(self):
        """Test unknown port kinds are rejected."""
        with pytest.raises(EngineError):
            MacroPort(name="x", kind="plasmid")

    def test_duplicate_ports(self):
        """Test duplicated port names are rejected."""
        with pytest.raises(EngineError):
            template(output_ports=[{"name": "vector", "kind": "sequence"}])

    def test_from_yaml(self, tmp_path):
        """Test loading a template from YAML."""
        path = tmp_path / "macro.yaml"
        path.write_text(
            "name: branch_it\n"
            "input_ports:\n"
            "  - {name: src, kind: sequence}\n"
            "script: |\n"
            '  op {"Branch": {"input": "${src}"}}\n'
        )
        t = MacroTemplate.from_yaml(path)
        assert t.name == "branch_it"
        assert t.input_ports[0].kind == "sequence"

    def test_from_yaml_missing(self, tmp_path):
        """Test a missing template file is an Io error."""
        with pytest.raises(EngineError) as exc:
            MacroTemplate.from_yaml(tmp_path / "missing.yaml")
        assert exc.value.code == ErrorCode.IO


class TestPreflight:
    """Test binding validation before execution."""

    def test_fills_defaults(self, engine):
        """Test defaults complete the bindings."""
        values = preflight(template(), {"vector": "pgex", "backbone": "bb"}, engine)
        assert values == {"vector": "pgex", "enzyme": "BamHI", "backbone": "bb"}

    @pytest.mark.parametrize("bindings, code", [
        ({"vector": "missing", "backbone": "bb"}, ErrorCode.NOT_FOUND),
        ({"backbone": "bb"}, ErrorCode.INVALID_INPUT),
        ({"vector": "pgex", "backbone": "bb", "extra": 1}, ErrorCode.INVALID_INPUT),
        ({"vector": 5, "backbone": "bb"}, ErrorCode.INVALID_INPUT),
    ])
    def test_rejects_bad_bindings(self, engine, bindings, code):
        """Test preflight failures leave the project untouched."""
        before = engine.state.to_json()
        with pytest.raises(EngineError) as exc:
            MacroRunner(engine).run(template(), bindings)
        assert exc.value.code == code
        assert engine.state.to_json() == before


class TestMacroRunner:
    """Test macro execution and instance recording."""

    def test_success(self, engine):
        """Test a successful run records an ok instance."""
        run = MacroRunner(engine).run(template(), {"vector": "pgex", "backbone": "bb"})
        assert run.ok
        instance = engine.state.lineage.macro_instances[-1]
        assert instance.macro_instance_id == "macro-1"
        assert instance.template_name == "cut_backbone"
        assert instance.bound_inputs == {"vector": "pgex", "enzyme": "BamHI"}
        assert instance.bound_outputs == {"backbone": "bb"}
        assert instance.emitted_op_ids == ["op-2", "op-3"]
        assert len(engine.state.sequences["bb"]) == 4938
        assert {e.run_id for e in engine.state.lineage.edges} == {"macro-1"}

    def test_run_id(self, engine):
        """Test an explicit run id is used for lineage edges."""
        MacroRunner(engine).run(template(), {"vector": "pgex", "backbone": "bb"}, run_id="r-9")
        assert engine.state.lineage.macro_instances[-1].run_id == "r-9"
        assert {e.run_id for e in engine.state.lineage.edges} == {"r-9"}

    def test_failure_non_transactional(self, engine):
        """Test a failing op marks the instance failed and keeps earlier ops."""
        run = MacroRunner(engine).run(template(), {"vector": "pgex", "enzyme": "EcoRI", "backbone": "bb"})
        assert not run.ok
        assert run.instance.status == "failed"
        assert run.instance.error["code"] == "NotFound"
        assert "frag_1" in engine.state.sequences
        assert len(run.steps) == 2

    def test_failure_transactional(self, engine):
        """Test a transactional failure rolls back but still records the instance."""
        sequences = dict(engine.state.sequences)
        with pytest.raises(WorkflowError) as exc:
            MacroRunner(engine).run(template(), {"vector": "pgex", "enzyme": "EcoRI", "backbone": "bb"},
                                    transactional=True)
        assert exc.value.failed_index == 1
        assert engine.state.sequences == sequences
        instances = engine.state.lineage.macro_instances
        assert [(i.macro_instance_id, i.status) for i in instances] == [("macro-1", "failed")]
        assert instances[0].emitted_op_ids == []

    def test_missing_output(self, engine):
        """Test an unproduced output port fails the instance."""
        t = template(output_ports=[{"name": "backbone", "kind": "sequence"},
                                   {"name": "insert", "kind": "sequence"}])
        run = MacroRunner(engine).run(t, {"vector": "pgex", "backbone": "bb", "insert": "ins"})
        assert run.instance.status == "failed"
        assert "insert" in run.instance.error["message"]

    def test_cancelled(self, engine):
        """Test cancellation is recorded as its own status."""
        token = CancellationToken(lambda stage, done, total: False)
        run = MacroRunner(engine).run(template(), {"vector": "pgex", "backbone": "bb"}, token=token)
        assert run.instance.status == "cancelled"
        assert engine.state.lineage.macro_instances[-1].status == "cancelled"

    def test_instance_ids_increase(self, engine):
        """Test each execution gets a new instance id."""
        runner = MacroRunner(engine)
        runner.run(template(), {"vector": "pgex", "backbone": "bb"})
        runner.run(template(), {"vector": "pgex", "backbone": "bb2"})
        ids = [i.macro_instance_id for i in engine.state.lineage.macro_instances]
        assert ids == ["macro-1", "macro-2"]
