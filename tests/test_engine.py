"""Tests for cloneflow.core executor and state."""

import json

import pytest
from cloneflow.core.containers import ContainerKind, ContainerMember, ContainerState
from cloneflow.core.executor import SELECTION_WARNING, _HANDLERS, Engine, capabilities
from cloneflow.core.lineage import NodeKind, SequenceOrigin
from cloneflow.core.models import Topology
from cloneflow.core.operations import OPERATION_TYPES, Branch, parse_operation
from cloneflow.core.progress import CancellationToken
from cloneflow.core.state import ProjectState
from cloneflow.errors import EngineError, ErrorCode, OperationCancelled
from cloneflow.utils.sequence import reverse_complement


PGEX = "GGATCCCCGGGAATTC" + "ACGTTGCA" * 617
FWD = "ACCTGACTGA"
REV = reverse_complement("TGCATCCGAT")
TEMPLATE = "GGGG" + FWD + "T" * 10 + reverse_complement(REV) + "GGGG"
LINEAR = "TTTTT" + "GGATCC" + "ACGTACGTAC" + "GAATTC" + "TTTTT"


@pytest.fixture
def engine():
    engine = Engine(ProjectState())
    engine.apply({"LoadSequence": {"seq_id": "pgex", "bases": PGEX, "topology": "circular"}})
    return engine


@pytest.fixture
def digested(engine):
    engine.apply({"Digest": {"input": "pgex", "enzymes": ["BamHI", "EcoRI"]}})
    return engine


def node_of(engine, seq_id):
    return engine.state.lineage.seq_to_node[seq_id]


class TestApply:
    """Test committing operations."""

    def test_load_sequence(self, engine):
        """Test a loaded sequence gets a node and a singleton container."""
        state = engine.state
        assert state.sequences["pgex"].topology == Topology.CIRCULAR
        node = state.lineage.nodes[node_of(engine, "pgex")]
        assert node.origin == SequenceOrigin.IMPORTED
        assert node.created_by_op == "op-1"
        container = state.container_state.containers["container-1"]
        assert container.kind == ContainerKind.SINGLETON
        assert container.name == "Imported sequence"
        assert state.container_state.seq_to_latest_container["pgex"] == "container-1"

    def test_digest_lineage_and_container(self, digested):
        """Test every fragment gets an edge from its parent and shares a pool."""
        state = digested.state
        assert [len(state.sequences[s]) for s in ("pgex_digest_1", "pgex_digest_2")] == [6, 4938]
        edges = [e for e in state.lineage.edges if e.op_id == "op-2"]
        assert {(e.from_node_id, e.to_node_id) for e in edges} == {
            (node_of(digested, "pgex"), node_of(digested, "pgex_digest_1")),
            (node_of(digested, "pgex"), node_of(digested, "pgex_digest_2")),
        }
        assert all(e.run_id == "interactive" for e in edges)
        pool = state.container_state.containers["container-2"]
        assert pool.kind == ContainerKind.POOL
        assert pool.member_ids() == ["pgex_digest_1", "pgex_digest_2"]
        assert state.validate() == []

    def test_run_id_recorded(self, engine):
        """Test the caller's run id lands on lineage edges."""
        engine.apply({"Branch": {"input": "pgex"}}, run_id="run-7")
        assert engine.state.lineage.edges[-1].run_id == "run-7"

    def test_ligation_multi_parent(self, digested):
        """Test ligation products have one edge per input."""
        result = digested.apply({"Ligation": {
            "inputs": ["pgex_digest_1", "pgex_digest_2"], "circularize_if_possible": True,
        }})
        assert result.created_seq_ids == ["ligation_1", "ligation_2"]
        product = digested.state.sequences["ligation_1"]
        assert product.topology == Topology.CIRCULAR
        assert len(product) == len(PGEX)
        parents = digested.state.lineage.parents_of(node_of(digested, "ligation_1"))
        assert sorted(parents) == sorted([node_of(digested, "pgex_digest_1"), node_of(digested, "pgex_digest_2")])

    def test_unique_ligation_rejected(self, digested):
        """Test unique=true fails when several products form."""
        with pytest.raises(EngineError):
            digested.apply({"Ligation": {"inputs": ["pgex_digest_1", "pgex_digest_2"], "unique": True}})

    def test_unique_ligation_single_product(self):
        """Test unique=true succeeds when exactly one product forms."""
        engine = Engine()
        engine.apply({"LoadSequence": {"seq_id": "lin", "bases": LINEAR}})
        engine.apply({"Digest": {"input": "lin", "enzymes": ["BamHI", "EcoRI"]}})
        result = engine.apply({"Ligation": {"inputs": ["lin_digest_1", "lin_digest_2"], "unique": True}})
        assert result.created_seq_ids == ["ligation_1"]
        assert engine.state.sequences["ligation_1"].bases == "TTTTTGGATCCACGTACGTACG"
        parents = engine.state.lineage.parents_of(node_of(engine, "ligation_1"))
        assert sorted(parents) == sorted([node_of(engine, "lin_digest_1"), node_of(engine, "lin_digest_2")])

    def test_container_ops(self, digested):
        """Test container-level digest and merge."""
        digested.apply({"MergeContainersById": {"container_ids": ["container-2", "container-2"]}})
        merged = digested.state.container_state.containers["container-3"]
        assert merged.member_ids() == ["merged_1", "merged_2"]
        assert [m.multiplicity for m in merged.members] == [2, 2]

        result = digested.apply({"DigestContainer": {"container_id": "container-1", "enzymes": ["EcoRI"]}})
        assert result.created_seq_ids == ["container-1_digest_pgex_1"]

    def test_pcr_naming(self):
        """Test PCR product ids and id collisions."""
        engine = Engine()
        engine.apply({"LoadSequence": {"seq_id": "tpl", "bases": TEMPLATE}})
        op = {"Pcr": {"template": "tpl", "forward_primer": FWD, "reverse_primer": REV}}
        assert engine.apply(op).created_seq_ids == ["tpl_pcr"]
        assert engine.apply(op).created_seq_ids == ["tpl_pcr_2"]
        mut = engine.apply({"PcrMutagenesis": {
            "template": "tpl",
            "forward_primer": {"sequence": "ACGTGACTGA", "max_mismatches": 1},
            "reverse_primer": REV,
            "mutations": [{"zero_based_position": 6, "reference": "C", "alternate": "G"}],
        }})
        assert mut.created_seq_ids == ["tpl_pcr_mut"]

    def test_select_candidate(self, digested):
        """Test selection adds the in-silico warning and a selection container."""
        result = digested.apply({"SelectCandidate": {"input": "pgex_digest_2", "criterion": "band at 5 kb"}})
        assert result.warnings == [SELECTION_WARNING]
        container = digested.state.container_state.containers["container-3"]
        assert container.kind == ContainerKind.SELECTION
        node = digested.state.lineage.nodes[node_of(digested, "pgex_digest_2_selected")]
        assert node.origin == SequenceOrigin.IN_SILICO_SELECTION

    def test_molecular_weight_filter(self, digested):
        """Test the gel-band filter keeps the fragment in range."""
        result = digested.apply({"FilterContainerByMolecularWeight": {
            "container_id": "container-2", "min_bp": 4000, "max_bp": 5000, "error": 0.1,
        }})
        assert result.created_seq_ids == ["mw_filter_1"]
        assert len(digested.state.sequences["mw_filter_1"]) == 4938

    def test_molecular_weight_filter_empty(self, digested):
        """Test no match warns unless unique is requested."""
        op = {"FilterByMolecularWeight": {"inputs": ["pgex_digest_1"], "min_bp": 100, "max_bp": 200}}
        result = digested.apply(op)
        assert result.created_seq_ids == []
        assert result.warnings
        op["FilterByMolecularWeight"]["unique"] = True
        with pytest.raises(EngineError):
            digested.apply(op)

    def test_derived_sequences(self, engine):
        """Test strand and topology derivations create new sequences."""
        engine.apply({"LoadSequence": {"seq_id": "x", "bases": "AACCGT"}})
        assert engine.state.sequences[engine.apply({"ReverseComplement": {"input": "x"}}).created_seq_ids[0]].bases == "ACGGTT"
        assert engine.apply({"Reverse": {"input": "x"}}).created_seq_ids == ["x_rev"]
        assert engine.apply({"Complement": {"input": "x"}}).created_seq_ids == ["x_comp"]
        circular = engine.apply({"SetTopology": {"input": "x", "topology": "circular"}}).created_seq_ids[0]
        assert circular == "x_circular"
        assert engine.state.sequences[circular].is_circular
        assert not engine.state.sequences["x"].is_circular

    def test_extract_region(self, engine):
        """Test region extraction across the origin."""
        result = engine.apply({"ExtractRegion": {"input": "pgex", "from": 4950, "to": 6}})
        seq_id = result.created_seq_ids[0]
        assert seq_id == "pgex_region_4950_6"
        assert engine.state.sequences[seq_id].bases == PGEX[-2:] + PGEX[:6]


class TestAtomicity:
    """Test that failed operations leave no trace."""

    def test_missing_input(self, engine):
        """Test NotFound leaves the state byte-identical."""
        before = engine.state.to_json()
        with pytest.raises(EngineError) as exc:
            engine.apply({"Digest": {"input": "nope", "enzymes": ["EcoRI"]}})
        assert exc.value.code == ErrorCode.NOT_FOUND
        assert engine.state.to_json() == before

    def test_failure_after_partial_commit(self, engine):
        """Test a handler failing midway rolls back the fragments it added."""
        engine.apply({"MergeContainers": {"inputs": ["pgex", "pgex"]}})
        engine.apply({"SetParameter": {"name": "max_fragments_per_container", "value": 3}})
        before = engine.state.to_json()
        with pytest.raises(EngineError):
            engine.apply({"DigestContainer": {"container_id": "container-2", "enzymes": ["BamHI", "EcoRI"]}})
        assert engine.state.to_json() == before
        assert engine.apply({"Branch": {"input": "pgex"}}).op_id == "op-4"

    def test_cancellation(self, engine):
        """Test a cancelling callback aborts without side effects."""
        before = engine.state.to_json()
        token = CancellationToken(lambda stage, done, total: False)
        with pytest.raises(OperationCancelled):
            engine.apply({"Digest": {"input": "pgex", "enzymes": ["EcoRI"]}}, token=token)
        assert engine.state.to_json() == before

    @pytest.mark.parametrize("op", [
        {"Digest": {"input": "pgex"}},
        {"Digest": {"input": "pgex", "enzymes": ["EcoRI"], "colour": "red"}},
        {"Transmogrify": {}},
        {"Digest": {}, "Branch": {}},
    ])
    def test_malformed_operations(self, engine, op):
        """Test malformed operations are InvalidInput."""
        before = engine.state.to_json()
        with pytest.raises(EngineError) as exc:
            engine.apply(op)
        assert exc.value.code == ErrorCode.INVALID_INPUT
        assert engine.state.to_json() == before


class TestFieldTypes:
    """Test operation fields are checked against their declared types."""

    @pytest.mark.parametrize("op", [
        {"ExtractRegion": {"input": "pgex", "from": "10", "to": 20}},
        {"FilterByMolecularWeight": {"inputs": ["pgex"], "min_bp": "100", "max_bp": 200}},
        {"GenerateCandidateSet": {"set_name": "w", "seq_id": "pgex", "length_bp": "20"}},
        {"GenerateCandidateSet": {"set_name": "w", "seq_id": "pgex", "length_bp": True}},
        {"FilterByMolecularWeight": {"inputs": ["pgex"], "min_bp": 1, "max_bp": 2, "unique": "false"}},
        {"Digest": {"input": "pgex", "enzymes": "EcoRI"}},
        {"Digest": {"input": "pgex", "enzymes": ["EcoRI", 7]}},
        {"Branch": {"input": 5}},
        {"Branch": {"input": None}},
        {"TopKCandidateSet": {"set_name": "w", "metric": "gc", "k": 2.5}},
    ])
    def test_mismatched_types(self, engine, op):
        """Test wrongly typed values are InvalidInput and change nothing."""
        before = engine.state.to_json()
        with pytest.raises(EngineError) as exc:
            engine.apply(op)
        assert exc.value.code == ErrorCode.INVALID_INPUT
        assert engine.state.to_json() == before

    def test_string_false_is_not_true(self, digested):
        """Test a string flag is rejected instead of read as unique=true."""
        op = {"FilterByMolecularWeight": {
            "inputs": ["pgex_digest_1", "pgex_digest_2"], "min_bp": 1, "max_bp": 10000, "unique": "false",
        }}
        with pytest.raises(EngineError) as exc:
            digested.apply(op)
        assert "unique" in exc.value.message

    def test_integer_accepted_for_float(self):
        """Test integral JSON numbers fill float fields."""
        op = parse_operation({"FilterByMolecularWeight": {"inputs": ["a"], "min_bp": 1, "max_bp": 2, "error": 0}})
        assert isinstance(op.error, float)
        assert parse_operation({"Branch": {"input": "a", "output_id": None}}).output_id is None


class TestDisplayAndParameters:
    """Test display-only operations."""

    def test_display_adds_no_lineage(self, engine):
        """Test visibility changes touch neither lineage nor containers."""
        lineage = engine.state.lineage.to_dict()
        containers = engine.state.container_state.to_dict()
        engine.apply({"SetDisplayVisibility": {"target": "Features", "visible": False}})
        engine.apply({"SetLinearViewport": {"start_bp": 100, "span_bp": 500}})
        assert engine.state.display.show_features is False
        assert engine.state.display.linear_view_span_bp == 500
        assert engine.state.lineage.to_dict() == lineage
        assert engine.state.container_state.to_dict() == containers

    def test_invalid_display_values(self, engine):
        """Test unknown targets and negative viewports fail."""
        with pytest.raises(EngineError):
            engine.apply({"SetDisplayVisibility": {"target": "Everything", "visible": True}})
        with pytest.raises(EngineError):
            engine.apply({"SetLinearViewport": {"start_bp": -1, "span_bp": 5}})

    def test_set_parameter(self, engine):
        """Test parameters are validated and enforced."""
        with pytest.raises(EngineError) as exc:
            engine.apply({"SetParameter": {"name": "max_everything", "value": 3}})
        assert exc.value.code == ErrorCode.UNSUPPORTED
        engine.apply({"SetParameter": {"name": "max_fragments_per_container", "value": 1}})
        with pytest.raises(EngineError):
            engine.apply({"Digest": {"input": "pgex", "enzymes": ["BamHI", "EcoRI"]}})


class TestCandidateSets:
    """Test candidate-set operations through the engine."""

    def test_generate_score_select(self, engine):
        """Test the candidate pipeline records candidate-set lineage."""
        engine.apply({"GenerateCandidateSet": {"set_name": "w", "seq_id": "pgex", "length_bp": 20,
                                               "step_bp": 500}})
        engine.apply({"ScoreCandidateSetExpression": {"set_name": "w", "metric": "gc",
                                                      "expression": "gc_fraction"}})
        engine.apply({"TopKCandidateSet": {"set_name": "w_gc", "metric": "gc", "k": 3}})
        store = engine.state.candidate_sets
        assert sorted(store) == ["w", "w_gc", "w_gc_top3"]
        assert len(store["w"]["candidates"]) == 10
        assert len(store["w_gc_top3"]["candidates"]) == 3

        lineage = engine.state.lineage
        w_node = lineage.set_to_node["w"]
        assert lineage.nodes[w_node].kind == NodeKind.CANDIDATE_SET
        assert lineage.parents_of(w_node) == [node_of(engine, "pgex")]
        assert lineage.parents_of(lineage.set_to_node["w_gc"]) == [w_node]
        assert engine.state.container_state.containers.keys() == {"container-1"}

    def test_set_op_and_delete(self, engine):
        """Test set algebra names and deletion."""
        engine.apply({"GenerateCandidateSet": {"set_name": "a", "seq_id": "pgex", "length_bp": 20,
                                               "step_bp": 1000}})
        engine.apply({"GenerateCandidateSet": {"set_name": "b", "seq_id": "pgex", "length_bp": 20,
                                               "step_bp": 2000}})
        engine.apply({"CandidateSetOp": {"op": "subtract", "left_set": "a", "right_set": "b"}})
        store = engine.state.candidate_sets
        assert [c["start"] for c in store["a_subtract_b"]["candidates"]] == [1000, 3000]
        edges = len(engine.state.lineage.edges)
        engine.apply({"DeleteCandidateSet": {"set_name": "a"}})
        assert "a" not in store
        assert len(engine.state.lineage.edges) == edges
        with pytest.raises(EngineError) as exc:
            engine.apply({"DeleteCandidateSet": {"set_name": "a"}})
        assert exc.value.code == ErrorCode.NOT_FOUND

    def test_candidate_limit(self, engine):
        """Test the candidate cap parameter applies."""
        engine.apply({"SetParameter": {"name": "max_candidates_per_set", "value": 5}})
        with pytest.raises(EngineError):
            engine.apply({"GenerateCandidateSet": {"set_name": "w", "seq_id": "pgex", "length_bp": 20}})


class TestLoadFile:
    """Test FASTA import."""

    def test_multi_record(self, tmp_path):
        """Test every record is imported with its topology."""
        path = tmp_path / "seqs.fasta"
        path.write_text(">p1 topology=circular\nACGTACGT\nACGT\n>p2 insert\nGGGG\n")
        engine = Engine()
        result = engine.apply({"LoadFile": {"path": str(path)}})
        assert result.created_seq_ids == ["p1", "p2"]
        assert engine.state.sequences["p1"].bases == "ACGTACGTACGT"
        assert engine.state.sequences["p1"].is_circular
        assert not engine.state.sequences["p2"].is_circular

    def test_as_id(self, tmp_path):
        """Test as_id names multi-record imports with suffixes."""
        path = tmp_path / "seqs.fa"
        path.write_text(">p1\nACGT\n>p2\nGGGG\n")
        result = Engine().apply({"LoadFile": {"path": str(path), "as_id": "lib"}})
        assert result.created_seq_ids == ["lib_1", "lib_2"]

    def test_unsupported_format(self, tmp_path):
        """Test non-FASTA files are Unsupported."""
        path = tmp_path / "seqs.gb"
        path.write_text("LOCUS x\n")
        with pytest.raises(EngineError) as exc:
            Engine().apply({"LoadFile": {"path": str(path)}})
        assert exc.value.code == ErrorCode.UNSUPPORTED

    def test_missing_file(self, tmp_path):
        """Test unreadable files are Io errors."""
        with pytest.raises(EngineError) as exc:
            Engine().apply({"LoadFile": {"path": str(tmp_path / "missing.fasta")}})
        assert exc.value.code == ErrorCode.IO


class TestExport:
    """Test file export operations."""

    def test_save_file_roundtrip(self, engine, tmp_path):
        """Test a saved FASTA reloads as the same circular sequence and adds no lineage."""
        lineage = engine.state.lineage.to_dict()
        containers = engine.state.container_state.to_dict()
        path = tmp_path / "pgex.fasta"
        result = engine.apply({"SaveFile": {"seq_id": "pgex", "path": str(path)}})
        assert result.created_seq_ids == []
        assert engine.state.lineage.to_dict() == lineage
        assert engine.state.container_state.to_dict() == containers

        reloaded = Engine()
        reloaded.apply({"LoadFile": {"path": str(path)}})
        assert reloaded.state.sequences["pgex"].bases == PGEX
        assert reloaded.state.sequences["pgex"].is_circular

    def test_save_file_unsupported_format(self, engine, tmp_path):
        """Test formats other than FASTA are Unsupported and write nothing."""
        path = tmp_path / "pgex.gb"
        with pytest.raises(EngineError) as exc:
            engine.apply({"SaveFile": {"seq_id": "pgex", "path": str(path), "format": "GenBank"}})
        assert exc.value.code == ErrorCode.UNSUPPORTED
        assert not path.exists()

    def test_save_file_missing_sequence(self, engine, tmp_path):
        """Test saving an unknown id is NotFound."""
        with pytest.raises(EngineError) as exc:
            engine.apply({"SaveFile": {"seq_id": "nope", "path": str(tmp_path / "x.fasta")}})
        assert exc.value.code == ErrorCode.NOT_FOUND

    def test_export_pool_container(self, digested, tmp_path):
        """Test a container's members are written with their ends."""
        lineage = digested.state.lineage.to_dict()
        path = tmp_path / "pool.json"
        digested.apply({"ExportPool": {"container_id": "container-2", "path": str(path)}})
        document = json.loads(path.read_text())
        assert document["schema"] == "cloneflow.pool.v1"
        assert document["pool_id"] == "container-2"
        assert document["human_id"] == "Pool(pgex_digest_1, pgex_digest_2)"
        assert document["member_count"] == 2
        first = document["members"][0]
        assert first["seq_id"] == "pgex_digest_1"
        assert first["sequence"] == "CCCGGG"
        assert first["topology"] == "linear"
        assert first["ends"]["forward_5"] == "GATC"
        assert first["ends"]["end_type"] == "5'"
        assert digested.state.lineage.to_dict() == lineage

    def test_export_pool_inputs(self, digested, tmp_path):
        """Test explicit ids and a custom pool id."""
        path = tmp_path / "pool.json"
        digested.apply({"ExportPool": {"inputs": ["pgex_digest_2"], "path": str(path), "pool_id": "p"}})
        document = json.loads(path.read_text())
        assert document["pool_id"] == "p"
        assert [m["length_bp"] for m in document["members"]] == [4938]

    @pytest.mark.parametrize("body", [
        {"path": "pool.json"},
        {"path": "pool.json", "inputs": ["pgex"], "container_id": "container-1"},
    ])
    def test_export_pool_needs_one_source(self, engine, tmp_path, body):
        """Test exactly one of inputs and container_id is required."""
        body = dict(body, path=str(tmp_path / body["path"]))
        with pytest.raises(EngineError) as exc:
            engine.apply({"ExportPool": body})
        assert exc.value.code == ErrorCode.INVALID_INPUT


class TestIncrementalValidation:
    """Test post-operation checks cover exactly what the operation added."""

    def test_clean_operation(self, digested):
        """Test a committed operation passes both the incremental and the full check."""
        state = digested.state
        mark = state.mark()
        result = digested.apply({"MergeContainers": {"inputs": ["pgex_digest_1", "pgex_digest_2"]}})
        assert state.validate_since(mark, result.created_seq_ids) == []
        assert state.validate() == []

    def test_cycle_among_new_nodes(self, engine):
        """Test a cycle made only of new edges is found."""
        lineage = engine.state.lineage
        mark = engine.state.mark()
        a = lineage.add_node("a", SequenceOrigin.DERIVED, "op-9")
        b = lineage.add_node("b", SequenceOrigin.DERIVED, "op-9")
        lineage.add_edges([a], [b], "op-9", "interactive")
        lineage.add_edges([b], [a], "op-9", "interactive")
        errors = engine.state.validate_since(mark, [])
        assert any("Cycle" in e for e in errors)

    def test_cycle_through_older_node(self, engine):
        """Test a new edge back into an older node falls back to a full check."""
        lineage = engine.state.lineage
        old = node_of(engine, "pgex")
        mark = engine.state.mark()
        new = lineage.add_node("child", SequenceOrigin.DERIVED, "op-9")
        lineage.add_edges([old], [new], "op-9", "interactive")
        lineage.add_edges([new], [old], "op-9", "interactive")
        errors = engine.state.validate_since(mark, [])
        assert any("Cycle" in e for e in errors)

    def test_dangling_new_container(self, engine):
        """Test a new container naming an unknown sequence is reported."""
        mark = engine.state.mark()
        engine.state.container_state.add([ContainerMember("ghost")], ContainerKind.POOL)
        errors = engine.state.validate_since(mark, [])
        assert errors == ["Container 'container-2' references unknown sequence 'ghost'"]

    def test_missing_created_sequence(self, engine):
        """Test a reported sequence that was never stored is caught."""
        errors = engine.state.validate_since(engine.state.mark(), ["phantom"])
        assert errors == ["Created sequence 'phantom' is missing"]

    def test_older_records_not_rechecked(self, engine):
        """Test records from before the mark are left to the full check."""
        engine.state.container_state.add([ContainerMember("ghost")], ContainerKind.POOL)
        assert engine.state.validate_since(engine.state.mark(), []) == []
        assert engine.state.validate() != []


class TestPersistence:
    """Test project round-trips and registry completeness."""

    def test_roundtrip(self, digested, tmp_path):
        """Test saving and loading reproduces the same JSON."""
        digested.apply({"GenerateCandidateSet": {"set_name": "w", "seq_id": "pgex", "length_bp": 20,
                                                 "step_bp": 1000}})
        path = tmp_path / "project.json"
        digested.state.save_to_path(path)
        loaded = ProjectState.load_from_path(path)
        assert loaded.to_json() == digested.state.to_json()
        assert loaded.validate() == []

    def test_continue_after_load(self, digested, tmp_path):
        """Test counters survive persistence."""
        path = tmp_path / "project.json"
        digested.state.save_to_path(path)
        engine = Engine(ProjectState.load_from_path(path))
        result = engine.apply({"Branch": {"input": "pgex"}})
        assert result.op_id == "op-3"
        assert engine.state.container_state.seq_to_latest_container["pgex_branch"] == "container-3"

    def test_containers_in_numeric_order(self):
        """Test container-2 is serialized before container-10."""
        containers = ContainerState()
        for i in range(11):
            containers.add([ContainerMember(f"s{i}")], ContainerKind.SINGLETON)
        keys = list(containers.to_dict()["containers"])
        assert keys == [f"container-{i}" for i in range(1, 12)]
        reloaded = ContainerState.from_dict(containers.to_dict())
        assert list(reloaded.to_dict()["containers"]) == keys

    def test_invalid_json(self):
        """Test corrupt project text is InvalidInput."""
        with pytest.raises(EngineError) as exc:
            ProjectState.from_json("{not json")
        assert exc.value.code == ErrorCode.INVALID_INPUT

    def test_every_operation_has_handler(self):
        """Test the handler registry covers the whole protocol."""
        assert set(_HANDLERS) == set(OPERATION_TYPES.values())
        caps = capabilities()
        assert len(caps["supported_operations"]) == len(OPERATION_TYPES)
        assert caps["display_only_operations"] == [
            "ExportPool", "SaveFile", "SetDisplayVisibility", "SetLinearViewport", "SetParameter",
        ]

    def test_operation_json_roundtrip(self):
        """Test tagged JSON parses and serializes back."""
        op = parse_operation({"ExtractRegion": {"input": "a", "from": 1, "to": 5}})
        assert op.from_ == 1
        assert op.to_dict() == {"ExtractRegion": {"input": "a", "from": 1, "to": 5, "output_id": None}}
        assert parse_operation(Branch(input="a")) == Branch(input="a")
