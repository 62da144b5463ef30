from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Hashable, Mapping, Tuple, Union

from .assignment import DiscreteKey, VectorValues
from .config import DEFAULT_PRUNED_ERROR
from .decision_tree import DecisionTree
from .discrete import DiscreteConditional
from .gaussian import GaussianConditional
from .mixture import GaussianMixture

__all__ = ["ConditionalKind", "HybridConditional"]

Key = Hashable
Payload = Union[DiscreteConditional, GaussianConditional, GaussianMixture]


class ConditionalKind(str, enum.Enum):
    DISCRETE = "discrete"
    GAUSSIAN = "gaussian"
    MIXTURE = "mixture"


_KIND_OF = {
    DiscreteConditional: ConditionalKind.DISCRETE,
    GaussianConditional: ConditionalKind.GAUSSIAN,
    GaussianMixture: ConditionalKind.MIXTURE,
}


@dataclass(frozen=True, eq=False)
class HybridConditional:
    kind: ConditionalKind
    inner: Payload

    def __post_init__(self):
        expected = _KIND_OF.get(type(self.inner))
        if expected is None:
            raise TypeError(f"Unsupported conditional type {type(self.inner).__name__}")
        if expected is not self.kind:
            raise TypeError(f"Conditional of kind {self.kind.value} cannot hold {type(self.inner).__name__}")

    @classmethod
    def wrap(cls, conditional: Union["HybridConditional", Payload]) -> "HybridConditional":
        if isinstance(conditional, HybridConditional):
            return conditional
        kind = _KIND_OF.get(type(conditional))
        if kind is None:
            raise TypeError(f"Unsupported conditional type {type(conditional).__name__}")
        return cls(kind, conditional)

    # Predicates ----------------------------------------------------------
    @property
    def is_discrete(self) -> bool:
        return self.kind is ConditionalKind.DISCRETE

    @property
    def is_continuous(self) -> bool:
        return self.kind is ConditionalKind.GAUSSIAN

    @property
    def is_hybrid(self) -> bool:
        return self.kind is ConditionalKind.MIXTURE

    # Typed access --------------------------------------------------------
    def as_discrete(self) -> DiscreteConditional:
        if not self.is_discrete:
            raise TypeError(f"Conditional is {self.kind.value}, not discrete")
        return self.inner  # type: ignore[return-value]

    def as_gaussian(self) -> GaussianConditional:
        if not self.is_continuous:
            raise TypeError(f"Conditional is {self.kind.value}, not gaussian")
        return self.inner  # type: ignore[return-value]

    def as_mixture(self) -> GaussianMixture:
        if not self.is_hybrid:
            raise TypeError(f"Conditional is {self.kind.value}, not a mixture")
        return self.inner  # type: ignore[return-value]

    # Keys ----------------------------------------------------------------
    @property
    def frontals(self) -> Tuple[Key, ...]:
        if self.is_discrete:
            return (self.inner.frontal.key,)
        return self.inner.frontals

    @property
    def continuous_keys(self) -> Tuple[Key, ...]:
        if self.is_discrete:
            return ()
        if self.is_continuous:
            return self.inner.keys
        return self.inner.continuous_keys

    @property
    def continuous_parents(self) -> Tuple[Key, ...]:
        if self.is_discrete:
            return ()
        return self.inner.parents

    @property
    def discrete_keys(self) -> Tuple[DiscreteKey, ...]:
        if self.is_continuous:
            return ()
        return self.inner.discrete_keys

    @property
    def discrete_parents(self) -> Tuple[DiscreteKey, ...]:
        if self.is_discrete:
            return self.inner.parents
        if self.is_hybrid:
            return self.inner.discrete_keys
        return ()

    # Evaluation ----------------------------------------------------------
    def error(
        self,
        values: VectorValues,
        assignment: Mapping[Key, int],
        pruned_error: float = DEFAULT_PRUNED_ERROR,
    ) -> float:
        if self.is_discrete:
            return self.inner.error(assignment, pruned_error)
        if self.is_continuous:
            return self.inner.error(values)
        return self.inner.error(values, assignment, pruned_error)

    def error_tree(
        self,
        values: VectorValues,
        pruned_error: float = DEFAULT_PRUNED_ERROR,
    ) -> DecisionTree[float]:
        if self.is_discrete:
            return self.inner.error_tree(pruned_error)
        if self.is_continuous:
            return DecisionTree.constant(self.inner.error(values))
        return self.inner.error_tree(values, pruned_error)

    def prune(self, survivors: DecisionTree[bool]) -> "HybridConditional":
        if self.is_continuous:
            return self
        return HybridConditional(self.kind, self.inner.prune(survivors))

    def equals(self, other: object, tol: float = 1e-9) -> bool:
        if not isinstance(other, HybridConditional) or other.kind is not self.kind:
            return False
        return self.inner.equals(other.inner, tol)

    def __repr__(self) -> str:
        return f"HybridConditional({self.inner!r})"
