"""Algorithmic pattern and complexity detection.

Turns a source submission into an Analysis: the set of algorithmic idioms
found in it, coarse time and space classes, and a short explanation.

Detection is static and deterministic. The same input always yields the
same patterns, complexities and issues, and the detector never raises:
empty input, unknown languages and unparseable code all produce an
Analysis with no patterns and N/A complexities.

PRIVACY: Source text is never logged. Only language and sizes are.
"""

from __future__ import annotations

import time

from app.logging_config import get_logger
from app.metrics import ANALYSES_TOTAL, ANALYSIS_DURATION
from services.code_features import (
    CodeFeatures,
    UnparseableSourceError,
    extract_features,
    normalize_language,
)
from services.complexity import Complexity, classify_space, classify_time
from services.schemas import Analysis

logger = get_logger(__name__)


# --- Pattern catalogue ---

SORTING = "sorting"
BINARY_SEARCH = "binary-search"
TWO_POINTER = "two-pointer"
SLIDING_WINDOW = "sliding-window"
DYNAMIC_PROGRAMMING = "dynamic-programming"
RECURSION = "recursion"
BACKTRACKING = "backtracking"
GRAPH_TRAVERSAL = "graph-traversal"
GREEDY = "greedy"
HASH_BASED_LOOKUP = "hash-based-lookup"
NESTED_LOOPS = "nested-loops"
DIVIDE_AND_CONQUER = "divide-and-conquer"
EARLY_EXIT = "early-exit"

PATTERN_CATALOGUE: frozenset[str] = frozenset(
    {
        SORTING,
        BINARY_SEARCH,
        TWO_POINTER,
        SLIDING_WINDOW,
        DYNAMIC_PROGRAMMING,
        RECURSION,
        BACKTRACKING,
        GRAPH_TRAVERSAL,
        GREEDY,
        HASH_BASED_LOOKUP,
        NESTED_LOOPS,
        DIVIDE_AND_CONQUER,
        EARLY_EXIT,
    }
)

NO_ISSUES = "No issues detected"


def build_pattern_set(f: CodeFeatures) -> frozenset[str]:
    """Map features onto stable pattern names."""
    patterns: set[str] = set()

    def maybe_add(cond: bool, name: str) -> None:
        if cond:
            patterns.add(name)

    dynamic_programming = f.dp_table or f.has_memoization
    maybe_add(f.has_sorting, SORTING)
    maybe_add(f.has_binary_search, BINARY_SEARCH)
    maybe_add(f.two_pointer, TWO_POINTER)
    maybe_add(f.sliding_window, SLIDING_WINDOW)
    maybe_add(dynamic_programming, DYNAMIC_PROGRAMMING)
    maybe_add(f.has_recursion, RECURSION)
    maybe_add(f.has_backtracking, BACKTRACKING)
    maybe_add(f.graph_traversal, GRAPH_TRAVERSAL)
    maybe_add(f.hash_lookup, HASH_BASED_LOOKUP)
    maybe_add(f.max_loop_depth >= 2, NESTED_LOOPS)
    maybe_add(f.has_divide_and_conquer, DIVIDE_AND_CONQUER)
    maybe_add(f.early_exit, EARLY_EXIT)

    # Greedy: choose from an ordering or a priority structure in one pass.
    maybe_add(
        (f.has_sorting or f.uses_heap)
        and bool(f.loop_paths)
        and not dynamic_programming
        and not f.has_backtracking,
        GREEDY,
    )
    return frozenset(patterns)


def build_issues(f: CodeFeatures, time_class: Complexity) -> str:
    """One short note per finding, joined by '; '."""
    notes: list[str] = []
    if f.max_loop_depth >= 3:
        notes.append(f"Loops nested {f.max_loop_depth} levels deep")
    elif f.max_loop_depth == 2 and time_class.rank >= Complexity.QUADRATIC.rank:
        notes.append("Nested loops make this quadratic")
    if any(linear >= 1 for linear, _ in f.sort_sites):
        notes.append("Sorting inside a loop")
    for func in f.recursive_functions:
        if func.branching and not func.memoized and not func.halves_input:
            notes.append(f"Recursive function '{func.name}' branches without memoisation")
    if f.allocates_2d or f.dp_table_2d:
        notes.append("Two-dimensional table needs quadratic memory")
    return "; ".join(notes) if notes else NO_ISSUES


class PatternDetector:
    """Stateless detector. Safe to call from many threads at once."""

    def analyze(self, source_text: str, language: str, submission_id: str = "") -> Analysis:
        start = time.monotonic()
        normalized = normalize_language(language)

        if not source_text or not source_text.strip():
            return self._not_applicable(
                submission_id, normalized or "other", "empty", "Empty source"
            )
        if normalized is None:
            return self._not_applicable(
                submission_id, "other", "unsupported", f"Unsupported language: {language}"
            )

        try:
            features = extract_features(source_text, normalized)
        except (UnparseableSourceError, RecursionError) as e:
            logger.info(
                "source_unparseable",
                submission_id=submission_id,
                language=normalized,
                size=len(source_text),
            )
            return self._not_applicable(
                submission_id, normalized, "unparseable", f"Could not parse source: {e}"
            )

        time_class = classify_time(features)
        analysis = Analysis(
            submission_id=submission_id,
            patterns=build_pattern_set(features),
            time_complexity=time_class,
            space_complexity=classify_space(features),
            issues=build_issues(features, time_class),
        )

        ANALYSIS_DURATION.observe(time.monotonic() - start)
        ANALYSES_TOTAL.labels(language=normalized, outcome="analyzed").inc()
        logger.debug(
            "source_analyzed",
            submission_id=submission_id,
            language=normalized,
            patterns=sorted(analysis.patterns),
            time_complexity=time_class.value,
        )
        return analysis

    @staticmethod
    def _not_applicable(submission_id: str, language: str, outcome: str, issues: str) -> Analysis:
        ANALYSES_TOTAL.labels(language=language, outcome=outcome).inc()
        return Analysis(
            submission_id=submission_id,
            patterns=frozenset(),
            time_complexity=Complexity.NOT_APPLICABLE,
            space_complexity=Complexity.NOT_APPLICABLE,
            issues=issues,
        )
