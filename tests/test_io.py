"""Tests for cloneflow.io module and the command-line interface."""

import json

import pandas as pd
import pytest
from click.testing import CliRunner
from cloneflow.candidates.models import Candidate, CandidateSet
from cloneflow.cli import cli
from cloneflow.core.executor import Engine
from cloneflow.core.models import Sequence, Topology
from cloneflow.core.state import ProjectState
from cloneflow.io.fasta import FastaRecord, is_fasta_path, read_fasta, sequence_record, write_fasta
from cloneflow.io.output import (
    candidate_set_frame,
    generate_summary_report,
    lineage_frame,
    state_summary,
    write_candidate_set_tsv,
)


PGEX = "GGATCCCCGGGAATTC" + "ACGTTGCA" * 617


@pytest.fixture
def engine():
    engine = Engine(ProjectState())
    engine.apply({"LoadSequence": {"seq_id": "pgex", "bases": PGEX, "topology": "circular"}})
    engine.apply({"Digest": {"input": "pgex", "enzymes": ["BamHI", "EcoRI"]}})
    return engine


class TestFasta:
    """Test FASTA reading and writing."""

    def test_write_then_read(self, tmp_path):
        """Test records survive a write/read cycle with topology."""
        path = tmp_path / "out.fasta"
        write_fasta(path, [FastaRecord("p", "topology=circular", "ACGT" * 40)], width=50)
        lines = path.read_text().splitlines()
        assert lines[0] == ">p topology=circular"
        assert len(lines[1]) == 50
        records = read_fasta(path)
        assert records[0].sequence == "ACGT" * 40
        assert records[0].circular

    def test_data_before_header(self, tmp_path):
        """Test sequence lines before any header are rejected."""
        path = tmp_path / "bad.fa"
        path.write_text("ACGT\n>x\nACGT\n")
        with pytest.raises(ValueError):
            read_fasta(path)

    def test_sequence_record(self):
        """Test the name and circular topology land in the header once."""
        seq = Sequence(id="p", bases="ACGT", topology=Topology.CIRCULAR, name="pGEX")
        assert sequence_record(seq).description == "pGEX topology=circular"
        reloaded = Sequence(id="p", bases="ACGT", topology=Topology.CIRCULAR, name="pGEX topology=circular")
        assert sequence_record(reloaded).description == "pGEX topology=circular"
        assert sequence_record(Sequence(id="l", bases="ACGT")).description == ""

    def test_suffixes(self):
        """Test FASTA detection by suffix."""
        assert is_fasta_path("a.FASTA")
        assert is_fasta_path("a.fna")
        assert not is_fasta_path("a.gb")


class TestOutput:
    """Test tabular output."""

    def test_candidate_frame(self, tmp_path):
        """Test one column per metric, missing values left empty."""
        cs = CandidateSet("w", [
            Candidate("c1", "s", 0, 5, "+", {"gc": 0.4}),
            Candidate("c2", "s", 5, 10, "-", {"gc": 0.6, "dist": 3.0}),
        ])
        df = candidate_set_frame(cs)
        assert list(df.columns) == ["candidate_id", "seq_id", "start", "end", "strand", "length_bp", "dist", "gc"]
        assert pd.isna(df.loc[0, "dist"])

        path = write_candidate_set_tsv(cs, tmp_path / "w.tsv")
        loaded = pd.read_csv(path, sep="\t")
        assert loaded["candidate_id"].tolist() == ["c1", "c2"]

    def test_summary(self, engine, tmp_path):
        """Test project counts and the markdown report."""
        summary = state_summary(engine.state)
        assert summary["sequences"] == 3
        assert summary["containers"] == 2
        assert summary["lineage_edges"] == 2

        report = generate_summary_report(engine.state, tmp_path / "report.md")
        text = report.read_text()
        assert "# CloneFlow Project Summary" in text
        assert "| pgex_digest_2 | 4,938 |" in text

    def test_lineage_frame(self, engine):
        """Test edges are listed by sequence id."""
        df = lineage_frame(engine.state)
        assert df["child"].tolist() == ["pgex_digest_1", "pgex_digest_2"]
        assert set(df["parent"]) == {"pgex"}


class TestCli:
    """Test the click command group."""

    def test_op_and_summary(self, tmp_path):
        """Test operations persist between invocations."""
        runner = CliRunner()
        state = str(tmp_path / "project.json")
        load = json.dumps({"LoadSequence": {"seq_id": "pgex", "bases": PGEX, "topology": "circular"}})
        result = runner.invoke(cli, ["op", load, "--state", state])
        assert result.exit_code == 0
        assert '"created_seq_ids": [\n    "pgex"\n  ]' in result.output

        digest = json.dumps({"Digest": {"input": "pgex", "enzymes": ["BamHI", "EcoRI"]}})
        assert runner.invoke(cli, ["op", digest, "-s", state]).exit_code == 0

        result = runner.invoke(cli, ["summary", "-s", state])
        assert result.exit_code == 0
        assert '"sequences": 3' in result.output

    def test_op_error(self, tmp_path):
        """Test engine errors exit non-zero and leave no project file."""
        runner = CliRunner()
        state = tmp_path / "project.json"
        result = runner.invoke(cli, ["op", '{"Branch": {"input": "nope"}}', "-s", str(state)])
        assert result.exit_code == 1
        assert not state.exists()

    def test_workflow_transactional(self, tmp_path):
        """Test a failing transactional workflow reports the failed index."""
        runner = CliRunner()
        state = str(tmp_path / "project.json")
        workflow = tmp_path / "wf.json"
        workflow.write_text(json.dumps({"run_id": "wf", "ops": [
            {"LoadSequence": {"seq_id": "a", "bases": "ACGT"}},
            {"Branch": {"input": "missing"}},
        ]}))
        result = runner.invoke(cli, ["workflow", str(workflow), "--transactional", "-s", state])
        assert result.exit_code == 1
        assert '"failed_index": 1' in result.output

    def test_capabilities(self):
        """Test the capabilities document."""
        result = CliRunner().invoke(cli, ["capabilities"])
        assert result.exit_code == 0
        assert '"Digest"' in result.output

    def test_export_fasta(self, tmp_path):
        """Test exported FASTA reloads with the same topology."""
        runner = CliRunner()
        state = str(tmp_path / "project.json")
        load = json.dumps({"LoadSequence": {"seq_id": "pgex", "bases": PGEX, "topology": "circular"}})
        runner.invoke(cli, ["op", load, "-s", state])
        out = tmp_path / "out.fasta"
        result = runner.invoke(cli, ["export-fasta", "pgex", "-o", str(out), "-s", state])
        assert result.exit_code == 0
        records = read_fasta(out)
        assert records[0].id == "pgex"
        assert records[0].circular

    def test_export_fasta_unknown_sequence(self, tmp_path):
        """Test exporting an unknown id fails without writing a file."""
        out = tmp_path / "out.fasta"
        result = CliRunner().invoke(cli, ["export-fasta", "nope", "-o", str(out), "-s", str(tmp_path / "p.json")])
        assert result.exit_code == 1
        assert not out.exists()

    def test_export_pool(self, tmp_path):
        """Test a container exports as a pool JSON file."""
        runner = CliRunner()
        state = str(tmp_path / "project.json")
        load = json.dumps({"LoadSequence": {"seq_id": "pgex", "bases": PGEX, "topology": "circular"}})
        runner.invoke(cli, ["op", load, "-s", state])
        digest = json.dumps({"Digest": {"input": "pgex", "enzymes": ["BamHI", "EcoRI"]}})
        runner.invoke(cli, ["op", digest, "-s", state])
        out = tmp_path / "pool.json"
        result = runner.invoke(cli, ["export-pool", "--container", "container-2", "-o", str(out), "-s", state])
        assert result.exit_code == 0
        document = json.loads(out.read_text())
        assert [m["seq_id"] for m in document["members"]] == ["pgex_digest_1", "pgex_digest_2"]
