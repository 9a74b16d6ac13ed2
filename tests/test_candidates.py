"""Tests for cloneflow.candidates module."""

import numpy as np
import pytest
from cloneflow.candidates.expressions import Expression, window_quantities
from cloneflow.candidates.generation import generate_candidates, generate_candidates_between_anchors
from cloneflow.candidates.models import Candidate, CandidateSet, metric_value, output_set_name
from cloneflow.candidates.optimization import (
    ObjectiveTerm,
    dominates,
    filter_by_metric,
    pareto_frontier,
    set_operation,
    top_k,
    weighted_objective,
)
from cloneflow.candidates.scoring import interval_distance, score_distance, score_expression
from cloneflow.core.models import Feature, FeatureLocation, Sequence
from cloneflow.errors import EngineError, ErrorCode
from cloneflow.transforms.extraction import SequenceAnchor


def make_set(name="scores", **metrics):
    """Candidate set with one candidate per keyword, e.g. a=dict(x=1)."""
    candidates = [
        Candidate(cid, "s", i * 10, i * 10 + 5, "+", dict(values))
        for i, (cid, values) in enumerate(sorted(metrics.items()))
    ]
    return CandidateSet(name=name, candidates=candidates, source_seq_ids=["s"])


def scored_set():
    return make_set(
        a=dict(x=1.0, y=5.0),
        b=dict(x=3.0, y=1.0),
        c=dict(x=3.0, y=2.0),
        d=dict(x=2.0, y=2.0),
    )


class TestGeneration:
    """Test candidate window generation."""

    def test_both_strands(self):
        """Test windows are emitted per position, plus strand first."""
        seq = Sequence(id="s", bases="ACGT" * 5)
        cs = generate_candidates(seq, "w", length_bp=5, step_bp=5, strands="both")
        assert len(cs) == 8
        assert cs.ids()[:3] == ["s:+:0-5", "s:-:0-5", "s:+:5-10"]
        assert cs.source_seq_ids == ["s"]

    def test_windows_do_not_wrap(self):
        """Test the last window ends at the sequence end."""
        seq = Sequence(id="s", bases="ACGT" * 5)
        cs = generate_candidates(seq, "w", length_bp=6, step_bp=4)
        assert [c.end for c in cs.candidates] == [6, 10, 14, 18]

    def test_limit(self):
        """Test generation refuses to exceed the candidate limit."""
        seq = Sequence(id="s", bases="ACGT" * 5)
        with pytest.raises(EngineError) as exc:
            generate_candidates(seq, "w", length_bp=5, step_bp=5, strands="both", max_candidates=3)
        assert exc.value.code == ErrorCode.INVALID_INPUT

    def test_feature_kind_restriction(self):
        """Test only windows inside a feature of the kind are kept."""
        seq = Sequence(id="s", bases="ACGT" * 5,
                       features=[Feature("gene", FeatureLocation.span(0, 10))])
        cs = generate_candidates(seq, "w", length_bp=5, step_bp=5, feature_kind="GENE")
        assert cs.ids() == ["s:+:0-5", "s:+:5-10"]

    def test_invalid_arguments(self):
        """Test invalid length, step and strand values."""
        seq = Sequence(id="s", bases="ACGT" * 5)
        with pytest.raises(EngineError):
            generate_candidates(seq, "w", length_bp=0)
        with pytest.raises(EngineError):
            generate_candidates(seq, "w", length_bp=5, step_bp=0)
        with pytest.raises(EngineError):
            generate_candidates(seq, "w", length_bp=5, strands="up")
        with pytest.raises(EngineError):
            generate_candidates(seq, "w", length_bp=25)

    def test_between_anchors_any_order(self):
        """Test windows lie strictly between the anchors, whatever their order."""
        seq = Sequence(id="s", bases="ACGT" * 5)
        cs = generate_candidates_between_anchors(
            seq, "w", SequenceAnchor(position=15), SequenceAnchor(position=5), length_bp=5, step_bp=5,
        )
        assert cs.ids() == ["s:+:5-10", "s:+:10-15"]

    def test_between_same_anchor(self):
        """Test identical anchors are rejected."""
        seq = Sequence(id="s", bases="ACGT" * 5)
        with pytest.raises(EngineError):
            generate_candidates_between_anchors(seq, "w", SequenceAnchor(position=5),
                                                SequenceAnchor(position=5), length_bp=2)


class TestExpression:
    """Test the expression parser."""

    def test_precedence(self):
        """Test operator precedence and associativity."""
        assert Expression("2 + 3 * 4").evaluate({}) == 14
        assert Expression("(2 + 3) * 4").evaluate({}) == 20
        assert Expression("2 ^ 3 ^ 2").evaluate({}) == 512
        assert Expression("-2 ^ 2").evaluate({}) == -4
        assert Expression("10 - 4 - 3").evaluate({}) == 3

    def test_functions_and_variables(self):
        """Test function calls over variables."""
        expr = Expression("max(1, gc_count, 3) + abs(-x) + log10(100)")
        assert expr.evaluate({"gc_count": 7, "x": 2}) == pytest.approx(11.0)
        assert expr.variables() == ["gc_count", "x"]

    def test_scientific_notation(self):
        """Test numbers with exponents."""
        assert Expression("1.5e2 + .5").evaluate({}) == 150.5

    @pytest.mark.parametrize("text", ["", "(1 + 2", "1 +", "foo(1)", "1 $ 2", "sqrt(1, 2)"])
    def test_parse_errors(self, text):
        """Test malformed expressions are InvalidInput."""
        with pytest.raises(EngineError) as exc:
            Expression(text)
        assert exc.value.code == ErrorCode.INVALID_INPUT

    @pytest.mark.parametrize("text", ["1 / 0", "log(0)", "sqrt(-1)", "missing + 1", "10 ^ 400"])
    def test_evaluation_errors(self, text):
        """Test evaluation failures are InvalidInput."""
        with pytest.raises(EngineError):
            Expression(text).evaluate({})

    def test_window_quantities(self):
        """Test built-in per-window variables."""
        q = window_quantities("GGCAN", 10, 15, "-")
        assert q["gc_count"] == 3
        assert q["at_count"] == 1
        assert q["n_fraction"] == pytest.approx(0.2)
        assert q["strand_sign"] == -1.0


class TestScoring:
    """Test metric scoring."""

    def test_expression_scores(self):
        """Test expressions are evaluated on the candidate's strand."""
        seq = Sequence(id="s", bases="GGCCAAAAAT")
        cs = generate_candidates(seq, "w", length_bp=5, step_bp=5)
        result = score_expression(cs, {"s": seq}, "gc", "gc_fraction * 100")
        values = [c.metrics["gc"] for c in result.candidate_set.candidates]
        assert values == [pytest.approx(80.0), pytest.approx(0.0)]
        assert cs.candidates[0].metrics == {}

    def test_builtins_shadow_metrics(self):
        """Test a stored metric named like a built-in is ignored."""
        seq = Sequence(id="s", bases="ACGTACGTAC")
        cs = CandidateSet("w", [Candidate("c1", "s", 2, 6, "+", {"start": 99.0})])
        result = score_expression(cs, {"s": seq}, "pos", "start")
        assert result.candidate_set.candidates[0].metrics["pos"] == 2.0

    def test_interval_distance(self):
        """Test signed gaps to intervals and points."""
        assert interval_distance(0, 5, 20, 30) == -15
        assert interval_distance(25, 28, 20, 30) == 0
        assert interval_distance(35, 40, 20, 30) == 5
        assert interval_distance(0, 5, 5, 5) == 0

    def test_distance_scores(self):
        """Test absolute and signed distance to the nearest feature."""
        seq = Sequence(id="s", bases="A" * 40, features=[Feature("gene", FeatureLocation.span(20, 30))])
        cs = generate_candidates(seq, "w", length_bp=5, step_bp=5)
        unsigned = score_distance(cs, {"s": seq}, "dist", feature_kind="gene")
        assert [c.metrics["dist"] for c in unsigned.candidate_set.candidates][:2] == [15.0, 10.0]
        signed = score_distance(cs, {"s": seq}, "dist", feature_kind="gene", signed=True)
        assert signed.candidate_set.candidates[0].metrics["dist"] == -15.0

    def test_distance_without_features(self):
        """Test candidates without an eligible feature are reported."""
        seq = Sequence(id="s", bases="A" * 40)
        cs = generate_candidates(seq, "w", length_bp=5, step_bp=5)
        result = score_distance(cs, {"s": seq}, "dist")
        assert result.warnings
        assert all("dist" not in c.metrics for c in result.candidate_set.candidates)

    def test_unsupported_mode(self):
        """Test unknown geometry modes are Unsupported."""
        seq = Sequence(id="s", bases="A" * 40)
        cs = generate_candidates(seq, "w", length_bp=5, step_bp=5)
        with pytest.raises(EngineError) as exc:
            score_distance(cs, {"s": seq}, "dist", feature_geometry_mode="nearest_atom")
        assert exc.value.code == ErrorCode.UNSUPPORTED


class TestOptimization:
    """Test selection and set algebra."""

    def test_top_k_ties_by_id(self):
        """Test equal scores are ordered by candidate id."""
        assert [c.candidate_id for c in top_k(scored_set(), "x", 2)] == ["b", "c"]
        assert [c.candidate_id for c in top_k(scored_set(), "x", 2, "min")] == ["a", "d"]
        assert len(top_k(scored_set(), "x", 10)) == 4

    def test_top_k_missing_metric(self):
        """Test a candidate without the metric fails."""
        with pytest.raises(EngineError):
            top_k(scored_set(), "z", 1)

    def test_pareto_frontier(self):
        """Test the frontier holds exactly the non-dominated candidates."""
        objectives = [ObjectiveTerm("x"), ObjectiveTerm("y")]
        frontier = pareto_frontier(scored_set(), objectives)
        assert [c.candidate_id for c in frontier] == ["a", "c"]
        vectors = {c.candidate_id: [c.metrics["x"], c.metrics["y"]] for c in scored_set().candidates}
        for member in frontier:
            assert not any(dominates(v, vectors[member.candidate_id]) for v in vectors.values())

    def test_pareto_frontier_generated_set(self):
        """Test frontier completeness over a larger set with ties and mixed directions."""
        rng = np.random.default_rng(7)
        values = rng.integers(0, 8, size=(120, 3))
        candidates = [
            Candidate(f"c{i:03d}", "s", i, i + 5, "+", {"x": float(x), "y": float(y), "z": float(z)})
            for i, (x, y, z) in enumerate(values)
        ]
        cs = CandidateSet(name="big", candidates=candidates, source_seq_ids=["s"])
        objectives = [ObjectiveTerm("x"), ObjectiveTerm("y", direction="min"), ObjectiveTerm("z")]
        frontier = pareto_frontier(cs, objectives)

        def vector(c):
            return [c.metrics["x"], -c.metrics["y"], c.metrics["z"]]

        frontier_ids = [c.candidate_id for c in frontier]
        assert frontier_ids == sorted(frontier_ids)
        front = [vector(c) for c in frontier]
        for c in cs.candidates:
            dominated = any(dominates(vector(other), vector(c)) for other in cs.candidates)
            if c.candidate_id in frontier_ids:
                assert not dominated
            else:
                assert dominated
                assert any(dominates(v, vector(c)) for v in front)

    def test_pareto_min_direction(self):
        """Test minimized objectives flip dominance."""
        frontier = pareto_frontier(scored_set(), [ObjectiveTerm("x", direction="min")])
        assert [c.candidate_id for c in frontier] == ["a"]

    def test_weighted_objective_normalized(self):
        """Test min-max normalization with a minimized term."""
        terms = [ObjectiveTerm("x"), ObjectiveTerm("y", direction="min")]
        scores = {c.candidate_id: c.metrics["score"] for c in weighted_objective(scored_set(), "score", terms)}
        assert scores == {
            "a": pytest.approx(0.0), "b": pytest.approx(2.0),
            "c": pytest.approx(1.75), "d": pytest.approx(1.25),
        }

    def test_weighted_objective_raw(self):
        """Test raw weighting negates minimized terms."""
        terms = [ObjectiveTerm("x", weight=2.0), ObjectiveTerm("y", direction="min")]
        scores = weighted_objective(scored_set(), "score", terms, normalize_metrics=False)
        assert scores[0].metrics["score"] == pytest.approx(2.0 - 5.0)

    def test_filter_by_value_and_quantile(self):
        """Test absolute and quantile bounds."""
        kept, _ = filter_by_metric(scored_set(), "x", min_value=2)
        assert [c.candidate_id for c in kept] == ["b", "c", "d"]
        kept, _ = filter_by_metric(scored_set(), "x", max_quantile=0.5)
        assert [c.candidate_id for c in kept] == ["a", "d"]

    def test_filter_drops_unscored(self):
        """Test candidates lacking the metric are dropped with a warning."""
        cs = make_set(a=dict(x=1.0), b=dict(y=2.0))
        kept, warnings = filter_by_metric(cs, "x")
        assert [c.candidate_id for c in kept] == ["a"]
        assert len(warnings) == 1

    def test_filter_invalid_bounds(self):
        """Test inverted bounds fail."""
        with pytest.raises(EngineError):
            filter_by_metric(scored_set(), "x", min_value=3, max_value=1)
        with pytest.raises(EngineError):
            filter_by_metric(scored_set(), "x", min_quantile=1.2)

    def test_set_algebra(self):
        """Test union, intersect and subtract over candidate ids."""
        left = make_set(a=dict(x=1.0), b=dict(x=2.0), c=dict(x=3.0))
        right = make_set(b=dict(x=9.0), d=dict(x=4.0))
        assert [c.candidate_id for c in set_operation("union", left, right)] == ["a", "b", "c", "d"]
        intersect = set_operation("intersect", left, right)
        assert [c.candidate_id for c in intersect] == ["b"]
        assert intersect[0].metrics["x"] == 2.0
        assert [c.candidate_id for c in set_operation("subtract", left, right)] == ["a", "c"]

    def test_set_algebra_laws(self):
        """Test idempotence and commutativity on ids."""
        left = make_set(a=dict(x=1.0), b=dict(x=2.0))
        right = make_set(b=dict(x=9.0), c=dict(x=4.0))
        assert [c.candidate_id for c in set_operation("union", left, left)] == ["a", "b"]
        assert set_operation("subtract", left, left) == []
        forward = {c.candidate_id for c in set_operation("intersect", left, right)}
        backward = {c.candidate_id for c in set_operation("intersect", right, left)}
        assert forward == backward

    def test_unknown_set_operation(self):
        """Test unknown set operations fail."""
        with pytest.raises(EngineError):
            set_operation("xor", scored_set(), scored_set())


class TestCandidateModels:
    """Test candidate-set storage helpers."""

    def test_roundtrip(self):
        """Test dict form preserves candidates and metrics."""
        cs = scored_set()
        assert CandidateSet.from_dict(cs.to_dict()) == cs

    def test_output_set_name(self):
        """Test derived names get numeric suffixes."""
        store = {"s": {}, "s_2": {}}
        assert output_set_name(store, None, "s") == "s_3"
        assert output_set_name(store, None, "t") == "t"
        assert output_set_name(store, "s", "ignored") == "s"

    def test_metric_value_missing(self):
        """Test missing metrics name the candidate."""
        with pytest.raises(EngineError) as exc:
            metric_value(Candidate("c1", "s", 0, 5), "gc", "w")
        assert "c1" in exc.value.message
