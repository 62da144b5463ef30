from __future__ import annotations

from typing import Dict, Hashable, Mapping, Optional, Sequence, Tuple

from .assignment import DiscreteKey, VectorValues
from .config import DEFAULT_PRUNED_ERROR
from .decision_tree import DecisionTree
from .exceptions import DimensionMismatchError, KeyNotFoundError
from .gaussian import GaussianConditional

__all__ = ["GaussianMixture"]

Key = Hashable


class GaussianMixture:
    """
    One Gaussian conditional per discrete assignment.

    Every branch shares the same frontal and parent variables; only the numeric
    content differs. A branch removed by pruning is stored as ``None``.
    Errors are offset by ``log_constant - log_normalization_constant(branch)``
    where ``log_constant`` is the largest branch constant, which makes them
    comparable across branches with different covariances.
    """

    __slots__ = (
        "_frontals",
        "_parents",
        "_dims",
        "_discrete_keys",
        "_conditionals",
        "_log_constants",
        "_log_constant",
    )

    def __init__(
        self,
        discrete_keys: Sequence[DiscreteKey],
        conditionals: DecisionTree[Optional[GaussianConditional]],
        log_constant: Optional[float] = None,
    ):
        if not isinstance(conditionals, DecisionTree):
            conditionals = DecisionTree.from_leaves(discrete_keys, list(conditionals))
        discrete_keys = tuple(DiscreteKey(*dkey) for dkey in discrete_keys)
        declared = {dkey.key for dkey in discrete_keys}
        extra = [dkey.key for dkey in conditionals.keys if dkey.key not in declared]
        if extra:
            raise KeyNotFoundError("Conditional tree branches on undeclared discrete keys", keys=extra)
        conditionals = conditionals.with_keys(discrete_keys)

        live = [conditional for conditional in conditionals.leaves() if conditional is not None]
        if not live:
            raise ValueError("GaussianMixture requires at least one non-pruned branch")
        reference = live[0]
        for conditional in live[1:]:
            if (
                conditional.frontals != reference.frontals
                or conditional.parents != reference.parents
            ):
                raise ValueError("All mixture branches must share frontal and parent variables")
            if conditional.dims != reference.dims:
                raise DimensionMismatchError("All mixture branches must share variable dimensions")

        self._frontals = reference.frontals
        self._parents = reference.parents
        self._dims: Dict[Key, int] = reference.dims
        self._discrete_keys = conditionals.keys
        self._conditionals = conditionals
        self._log_constants: DecisionTree[float] = conditionals.apply(
            lambda conditional: (
                conditional.log_normalization_constant() if conditional is not None else float("-inf")
            )
        )
        # Pruning keeps the constant of the full mixture so surviving errors do not shift.
        if log_constant is None:
            log_constant = max(conditional.log_normalization_constant() for conditional in live)
        self._log_constant = float(log_constant)

    @classmethod
    def from_conditionals(
        cls,
        discrete_keys: Sequence[DiscreteKey],
        conditionals: Sequence[GaussianConditional],
    ) -> "GaussianMixture":
        """Build from one conditional per assignment, row-major over ``discrete_keys``."""
        return cls(discrete_keys, DecisionTree.from_leaves(discrete_keys, list(conditionals)))

    @property
    def frontals(self) -> Tuple[Key, ...]:
        return self._frontals

    @property
    def parents(self) -> Tuple[Key, ...]:
        return self._parents

    @property
    def continuous_keys(self) -> Tuple[Key, ...]:
        return self._frontals + self._parents

    @property
    def discrete_keys(self) -> Tuple[DiscreteKey, ...]:
        return self._discrete_keys

    @property
    def conditionals(self) -> DecisionTree[Optional[GaussianConditional]]:
        return self._conditionals

    @property
    def log_normalization_constants(self) -> DecisionTree[float]:
        return self._log_constants

    @property
    def log_constant(self) -> float:
        return self._log_constant

    def dim(self, key: Key) -> int:
        return self._dims[key]

    def __call__(self, assignment: Mapping[Key, int]) -> Optional[GaussianConditional]:
        return self._conditionals(assignment)

    def _branch_error(
        self,
        conditional: Optional[GaussianConditional],
        values: VectorValues,
        pruned_error: float,
    ) -> float:
        if conditional is None:
            return pruned_error
        offset = self._log_constant - conditional.log_normalization_constant()
        return conditional.error(values) + offset

    def error(
        self,
        values: VectorValues,
        assignment: Mapping[Key, int],
        pruned_error: float = DEFAULT_PRUNED_ERROR,
    ) -> float:
        return self._branch_error(self(assignment), values, pruned_error)

    def error_tree(
        self,
        values: VectorValues,
        pruned_error: float = DEFAULT_PRUNED_ERROR,
    ) -> DecisionTree[float]:
        return self._conditionals.apply(
            lambda conditional: self._branch_error(conditional, values, pruned_error)
        )

    def prune(self, survivors: DecisionTree[bool]) -> "GaussianMixture":
        """Drop branches that have no surviving extension in ``survivors``."""
        own = {dkey.key for dkey in self._discrete_keys}
        alive = survivors
        for dkey in survivors.keys:
            if dkey.key not in own:
                alive = alive.reduce(dkey.key, lambda a, b: a or b)
        pruned = self._conditionals.combine(
            alive,
            lambda conditional, keep: conditional if keep else None,
        )
        return GaussianMixture(self._discrete_keys, pruned, log_constant=self._log_constant)

    def equals(self, other: object, tol: float = 1e-9) -> bool:
        if not isinstance(other, GaussianMixture):
            return False
        if self._discrete_keys != other._discrete_keys:
            return False
        if abs(self._log_constant - other._log_constant) > tol:
            return False
        return self._conditionals.equals(other._conditionals, tol)

    def __repr__(self) -> str:
        frontals = ", ".join(repr(key) for key in self._frontals)
        parents = ", ".join(repr(key) for key in self._parents)
        modes = ", ".join(repr(dkey.key) for dkey in self._discrete_keys)
        return f"GaussianMixture(p({frontals} | {parents}; {modes}))"
