from __future__ import annotations

import math
from typing import Dict, Hashable, List, Mapping, Sequence, Tuple

import numpy as np

from .assignment import DiscreteKey, DiscreteValues, merge_discrete_keys
from .config import DEFAULT_PRUNED_ERROR
from .decision_tree import DecisionTree
from .exceptions import DimensionMismatchError, InvalidAssignmentError, KeyNotFoundError

__all__ = ["DiscreteConditional", "parse_signature"]

Key = Hashable


def parse_signature(signature: str, cardinality: int, nr_rows: int) -> np.ndarray:
    """
    Parse a signature such as ``"99/1"`` or ``"1/2 3/2"`` into a row-normalized table.

    Rows are separated by whitespace, one per parent assignment (first parent
    most significant); each row lists ``cardinality`` non-negative weights
    separated by ``/``.
    """
    rows = signature.split()
    if len(rows) != nr_rows:
        raise DimensionMismatchError(
            f"Signature {signature!r} has the wrong number of rows",
            expected=nr_rows,
            actual=len(rows),
        )
    table = np.zeros((nr_rows, cardinality), dtype=np.float64)
    for index, row in enumerate(rows):
        try:
            weights = [float(part) for part in row.split("/")]
        except ValueError as exc:
            raise ValueError(f"Invalid signature row {row!r}") from exc
        if len(weights) != cardinality:
            raise DimensionMismatchError(
                f"Signature row {row!r} has the wrong number of weights",
                expected=cardinality,
                actual=len(weights),
            )
        total = sum(weights)
        if total <= 0.0 or any(weight < 0.0 for weight in weights):
            raise ValueError(f"Signature row {row!r} must have non-negative weights with a positive sum")
        table[index] = np.asarray(weights) / total
    return table


class DiscreteConditional:
    """P(frontal | parents) stored as a table of shape ``(*parent_cards, frontal_card)``."""

    __slots__ = ("_frontal", "_parents", "_table")

    def __init__(
        self,
        frontal: DiscreteKey,
        table: np.ndarray,
        parents: Sequence[DiscreteKey] = (),
    ):
        frontal = DiscreteKey(*frontal)
        parents = tuple(DiscreteKey(*parent) for parent in parents)
        if frontal.key in {parent.key for parent in parents}:
            raise ValueError(f"Frontal key {frontal.key!r} is also listed as a parent")
        expected = tuple(parent.cardinality for parent in parents) + (frontal.cardinality,)
        table = np.array(table, dtype=np.float64)
        if table.size == int(np.prod(expected)):
            table = table.reshape(expected)
        if table.shape != expected:
            raise DimensionMismatchError(
                f"Conditional table shape {table.shape} does not match cardinalities {expected}"
            )
        if np.any(table < 0.0):
            raise ValueError("Conditional table contains negative probabilities")
        table.setflags(write=False)
        self._frontal = frontal
        self._parents = parents
        self._table = table

    @classmethod
    def from_signature(
        cls,
        frontal: DiscreteKey,
        signature: str,
        parents: Sequence[DiscreteKey] = (),
    ) -> "DiscreteConditional":
        frontal = DiscreteKey(*frontal)
        parents = tuple(DiscreteKey(*parent) for parent in parents)
        nr_rows = int(np.prod([parent.cardinality for parent in parents])) if parents else 1
        table = parse_signature(signature, frontal.cardinality, nr_rows)
        return cls(frontal, table, parents)

    @property
    def frontal(self) -> DiscreteKey:
        return self._frontal

    @property
    def parents(self) -> Tuple[DiscreteKey, ...]:
        return self._parents

    @property
    def discrete_keys(self) -> Tuple[DiscreteKey, ...]:
        return merge_discrete_keys((self._frontal,), self._parents)

    @property
    def table(self) -> np.ndarray:
        return self._table

    def _parent_index(self, values: Mapping[Key, int]) -> Tuple[int, ...]:
        missing = [parent.key for parent in self._parents if parent.key not in values]
        if missing:
            raise KeyNotFoundError("Assignment is missing parents of discrete conditional", keys=missing)
        index: List[int] = []
        for parent in self._parents:
            value = int(values[parent.key])
            if not 0 <= value < parent.cardinality:
                raise InvalidAssignmentError(
                    f"Value {value} out of range for discrete key {parent.key!r}"
                )
            index.append(value)
        return tuple(index)

    def probabilities(self, parent_values: Mapping[Key, int]) -> np.ndarray:
        return self._table[self._parent_index(parent_values)]

    def __call__(self, values: Mapping[Key, int]) -> float:
        if self._frontal.key not in values:
            raise KeyNotFoundError("Assignment is missing frontal key", keys=[self._frontal.key])
        value = int(values[self._frontal.key])
        if not 0 <= value < self._frontal.cardinality:
            raise InvalidAssignmentError(
                f"Value {value} out of range for discrete key {self._frontal.key!r}"
            )
        return float(self._table[self._parent_index(values) + (value,)])

    def error(self, values: Mapping[Key, int], pruned_error: float = DEFAULT_PRUNED_ERROR) -> float:
        probability = self(values)
        if probability <= 0.0:
            return pruned_error
        return -math.log(probability)

    def error_tree(self, pruned_error: float = DEFAULT_PRUNED_ERROR) -> DecisionTree[float]:
        return DecisionTree.from_function(
            self.discrete_keys,
            lambda assignment: self.error(assignment, pruned_error),
        )

    def argmax(self, parent_values: Mapping[Key, int], tie_break: str = "lowest") -> int:
        row = self.probabilities(parent_values)
        best = float(np.max(row))
        winners = np.flatnonzero(row == best)
        return int(winners[0] if tie_break == "lowest" else winners[-1])

    def prune(self, survivors: DecisionTree[bool]) -> "DiscreteConditional":
        """Zero every entry for which no surviving joint assignment exists."""
        own = {dkey.key for dkey in self.discrete_keys}
        alive = survivors
        for dkey in survivors.keys:
            if dkey.key not in own:
                alive = alive.reduce(dkey.key, lambda a, b: a or b)
        table = np.array(self._table)
        names = [parent.key for parent in self._parents] + [self._frontal.key]
        for index in np.ndindex(*table.shape):
            assignment: Dict[Key, int] = dict(zip(names, (int(i) for i in index)))
            if not alive(DiscreteValues(assignment)):
                table[index] = 0.0
        return DiscreteConditional(self._frontal, table, self._parents)

    def equals(self, other: object, tol: float = 1e-9) -> bool:
        if not isinstance(other, DiscreteConditional):
            return False
        return (
            self._frontal == other._frontal
            and self._parents == other._parents
            and np.allclose(self._table, other._table, rtol=0.0, atol=tol)
        )

    def __repr__(self) -> str:
        parents = ", ".join(repr(parent.key) for parent in self._parents)
        return f"DiscreteConditional(P({self._frontal.key!r} | {parents}))"
