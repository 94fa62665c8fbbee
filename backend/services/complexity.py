"""Big-O classification from extracted code features.

Every signal proposes a candidate class and the worst candidate wins.
The result is a coarse label, not a proof.
"""

from __future__ import annotations

from enum import Enum

from services.code_features import CodeFeatures, LoopPath


class Complexity(str, Enum):
    """Asymptotic classes in increasing order of cost."""

    CONSTANT = "O(1)"
    LOGARITHMIC = "O(log n)"
    LINEAR = "O(n)"
    LINEARITHMIC = "O(n log n)"
    QUADRATIC = "O(n^2)"
    POLYNOMIAL = "O(n^k)"
    EXPONENTIAL = "O(2^n)"
    NOT_APPLICABLE = "N/A"

    @property
    def rank(self) -> int:
        return _RANK[self]


_RANK = {
    Complexity.NOT_APPLICABLE: -1,
    Complexity.CONSTANT: 0,
    Complexity.LOGARITHMIC: 1,
    Complexity.LINEAR: 2,
    Complexity.LINEARITHMIC: 3,
    Complexity.QUADRATIC: 4,
    Complexity.POLYNOMIAL: 5,
    Complexity.EXPONENTIAL: 6,
}


def worst(*classes: Complexity) -> Complexity:
    return max(classes, key=lambda c: c.rank, default=Complexity.CONSTANT)


def class_for_path(linear: int, halving: int) -> Complexity:
    """Class of `linear` nested linear loops wrapping `halving` halving loops."""
    if linear >= 3:
        return Complexity.POLYNOMIAL
    if linear == 2:
        return Complexity.QUADRATIC
    if linear == 1:
        return Complexity.LINEARITHMIC if halving else Complexity.LINEAR
    return Complexity.LOGARITHMIC if halving else Complexity.CONSTANT


def _sort_class(site: LoopPath) -> Complexity:
    # A sort is one linear pass with a logarithmic factor.
    linear, halving = site
    return class_for_path(linear + 1, halving + 1)


def _search_class(site: LoopPath) -> Complexity:
    linear, halving = site
    return class_for_path(linear, halving + 1)


def classify_time(features: CodeFeatures) -> Complexity:
    candidates = [Complexity.CONSTANT]
    candidates.extend(class_for_path(*path) for path in features.loop_paths)
    candidates.extend(_sort_class(site) for site in features.sort_sites)
    candidates.extend(_search_class(site) for site in features.search_sites)

    for func in features.recursive_functions:
        if func.memoized:
            candidates.append(Complexity.QUADRATIC if func.memo_2d else Complexity.LINEAR)
        elif func.branching:
            candidates.append(
                Complexity.LINEARITHMIC if func.halves_input else Complexity.EXPONENTIAL
            )
        else:
            candidates.append(
                Complexity.LOGARITHMIC if func.halves_input else Complexity.LINEAR
            )

    if features.graph_traversal:
        candidates.append(Complexity.LINEAR)
    return worst(*candidates)


def classify_space(features: CodeFeatures) -> Complexity:
    candidates = [Complexity.CONSTANT]
    if features.allocates_2d or features.dp_table_2d:
        candidates.append(Complexity.QUADRATIC)
    if features.allocates_linear or features.dp_table or features.graph_traversal:
        candidates.append(Complexity.LINEAR)

    for func in features.recursive_functions:
        if func.memoized:
            candidates.append(Complexity.QUADRATIC if func.memo_2d else Complexity.LINEAR)
        elif func.halves_input:
            # Call depth only; merge buffers show up as allocations.
            candidates.append(Complexity.LOGARITHMIC)
        else:
            candidates.append(Complexity.LINEAR)
    return worst(*candidates)
