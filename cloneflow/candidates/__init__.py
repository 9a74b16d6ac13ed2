"""
Candidate-set engine: window generation, metric scoring, multi-objective
selection and set algebra.
"""

from .generation import generate_candidates, generate_candidates_between_anchors
from .models import Candidate, CandidateSet, candidate_id_for
from .optimization import (
    ObjectiveTerm,
    filter_by_metric,
    pareto_frontier,
    set_operation,
    top_k,
    weighted_objective,
)
from .scoring import score_distance, score_expression

__all__ = [
    'Candidate',
    'CandidateSet',
    'candidate_id_for',
    'generate_candidates',
    'generate_candidates_between_anchors',
    'ObjectiveTerm',
    'filter_by_metric',
    'pareto_frontier',
    'set_operation',
    'top_k',
    'weighted_objective',
    'score_distance',
    'score_expression',
]
