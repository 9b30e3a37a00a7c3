"""
Matching components for Load Hunter.

Exports the predicate, type canonicalizer, cursor controller, forward matcher,
lifecycle sweeper, operator actions and the read-side aggregator.
"""

from load_hunter.matching.actions import MatchActions
from load_hunter.matching.aggregator import MatchAggregator
from load_hunter.matching.canonical import TypeCanonicalizer
from load_hunter.matching.cursor import CursorController
from load_hunter.matching.forward import ForwardMatcher
from load_hunter.matching.lifecycle import LifecycleSweeper, SweepOutcome
from load_hunter.matching.predicate import MatchPredicate

__all__ = [
    "CursorController",
    "ForwardMatcher",
    "LifecycleSweeper",
    "MatchActions",
    "MatchAggregator",
    "MatchPredicate",
    "SweepOutcome",
    "TypeCanonicalizer",
]
