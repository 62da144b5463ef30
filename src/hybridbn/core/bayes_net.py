from __future__ import annotations

import logging
from typing import Hashable, Iterable, Iterator, List, Mapping, Optional, Sequence, Set, Tuple, Union

from .assignment import (
    DiscreteKey,
    DiscreteValues,
    HybridValues,
    VectorValues,
    merge_discrete_keys,
)
from .conditional import HybridConditional, Payload
from .config import InferenceConfig
from .decision_tree import DecisionTree
from .discrete import DiscreteConditional
from .exceptions import AssignmentIncompleteError, OrderingError
from .gaussian import GaussianBayesNet, GaussianConditional
from .mixture import GaussianMixture

__all__ = ["HybridBayesNet"]

Key = Hashable

_logger = logging.getLogger(__name__)


def _as_vector_values(values: Union[VectorValues, Mapping[Key, object]]) -> VectorValues:
    if isinstance(values, VectorValues):
        return values
    return VectorValues(values)


def _as_discrete_values(assignment: Mapping[Key, int]) -> DiscreteValues:
    if isinstance(assignment, DiscreteValues):
        return assignment
    return DiscreteValues(assignment)


def _intersect(
    left: Optional[DecisionTree[bool]],
    right: Optional[DecisionTree[bool]],
) -> Optional[DecisionTree[bool]]:
    if left is None:
        return right
    if right is None:
        return left
    return left.combine(right, lambda a, b: a and b)


class HybridBayesNet:
    """
    Chain-rule factorization of a discrete/continuous posterior.

    Conditionals are kept in elimination order: entry ``i`` is
    ``p(frontals_i | parents_i)`` and every parent is the frontal variable of
    a later entry, so back-substitution walks the sequence from the end.
    Query operations never modify the net.

    A pruned net also carries ``survivors``, a boolean tree over the discrete
    keys marking the joint assignments that pruning kept. Every other
    assignment reports ``config.pruned_error`` and cannot be chosen, even when
    each conditional on its own still has a live entry for it.
    """

    def __init__(
        self,
        conditionals: Optional[Iterable[Union[HybridConditional, Payload]]] = None,
        config: Optional[InferenceConfig] = None,
        survivors: Optional[DecisionTree[bool]] = None,
    ):
        self.config = (config or InferenceConfig()).normalized()
        self._conditionals: List[HybridConditional] = []
        self._survivors = survivors
        if isinstance(conditionals, HybridBayesNet):
            self.push_back(conditionals)
            return
        for conditional in conditionals or ():
            self.push_back(conditional)

    # Construction --------------------------------------------------------
    def push_back(self, conditional: Union["HybridBayesNet", HybridConditional, Payload]) -> None:
        """
        Append a conditional, or every conditional of another net.

        Entries must arrive in elimination order, so a parent may be appended
        after its child; :meth:`check_ordering` validates the finished net and
        ``optimize`` runs it before back-substitution.
        """
        if isinstance(conditional, HybridBayesNet):
            self._conditionals.extend(conditional._conditionals)
            self._survivors = _intersect(self._survivors, conditional._survivors)
            return
        self._conditionals.append(HybridConditional.wrap(conditional))

    def add_discrete(
        self,
        frontal: DiscreteKey,
        signature: str,
        parents: Sequence[DiscreteKey] = (),
    ) -> DiscreteConditional:
        conditional = DiscreteConditional.from_signature(frontal, signature, parents)
        self.push_back(conditional)
        return conditional

    # Access --------------------------------------------------------------
    def __len__(self) -> int:
        return len(self._conditionals)

    def __iter__(self) -> Iterator[HybridConditional]:
        return iter(self._conditionals)

    def __getitem__(self, index: int) -> HybridConditional:
        return self._conditionals[index]

    def at(self, index: int) -> HybridConditional:
        return self._conditionals[index]

    def at_discrete(self, index: int) -> DiscreteConditional:
        return self._conditionals[index].as_discrete()

    def at_gaussian(self, index: int) -> GaussianConditional:
        return self._conditionals[index].as_gaussian()

    def at_mixture(self, index: int) -> GaussianMixture:
        return self._conditionals[index].as_mixture()

    @property
    def discrete_keys(self) -> Tuple[DiscreteKey, ...]:
        return merge_discrete_keys(*(conditional.discrete_keys for conditional in self._conditionals))

    @property
    def continuous_keys(self) -> Tuple[Key, ...]:
        seen: List[Key] = []
        for conditional in self._conditionals:
            for key in conditional.continuous_keys:
                if key not in seen:
                    seen.append(key)
        return tuple(seen)

    @property
    def survivors(self) -> Optional[DecisionTree[bool]]:
        return self._survivors

    def _mixture_keys(self) -> Tuple[DiscreteKey, ...]:
        return merge_discrete_keys(
            *(conditional.discrete_keys for conditional in self._conditionals if conditional.is_hybrid)
        )

    def _is_pruned(self, assignment: DiscreteValues) -> bool:
        # True when no surviving joint assignment extends ``assignment``.
        if self._survivors is None:
            return False
        return not any(self._survivors.restrict(assignment).leaves())

    def _mask(self, tree: DecisionTree[float]) -> DecisionTree[float]:
        if self._survivors is None:
            return tree
        pruned_error = self.config.pruned_error
        return tree.combine(self._survivors, lambda total, alive: total if alive else pruned_error)

    def check_ordering(self, continuous: bool = True, discrete: bool = True) -> None:
        """Raise :class:`OrderingError` unless every parent is a frontal of a later conditional."""
        solved: Set[Key] = set()
        for index in range(len(self._conditionals) - 1, -1, -1):
            conditional = self._conditionals[index]
            unsolved: List[Key] = []
            if continuous:
                unsolved.extend(key for key in conditional.continuous_parents if key not in solved)
            if discrete:
                unsolved.extend(
                    dkey.key for dkey in conditional.discrete_parents if dkey.key not in solved
                )
            if unsolved:
                raise OrderingError(
                    f"Parents of conditional {index} are not frontals of later conditionals",
                    keys=unsolved,
                )
            solved.update(conditional.frontals)

    # Queries -------------------------------------------------------------
    def choose(self, assignment: Mapping[Key, int]) -> GaussianBayesNet:
        """Collapse every mixture to the branch selected by ``assignment``; drop discrete conditionals."""
        assignment = _as_discrete_values(assignment)
        missing = assignment.missing(self._mixture_keys())
        if missing:
            raise AssignmentIncompleteError(
                "Discrete assignment does not cover the mixture keys", keys=missing
            )
        if self._is_pruned(assignment):
            raise AssignmentIncompleteError(
                "Assignment was removed by pruning",
                keys=[dkey.key for dkey in self._survivors.keys],
            )
        gaussian_net = GaussianBayesNet()
        for index, conditional in enumerate(self._conditionals):
            if conditional.is_discrete:
                continue
            if conditional.is_continuous:
                gaussian_net.push_back(conditional.as_gaussian())
                continue
            chosen = conditional.as_mixture()(assignment)
            if chosen is None:
                raise AssignmentIncompleteError(
                    f"Assignment selects a pruned branch of conditional {index}",
                    keys=[dkey.key for dkey in conditional.discrete_keys],
                )
            gaussian_net.push_back(chosen)
        return gaussian_net

    def optimize_discrete(self) -> DiscreteValues:
        """Chain argmax through the discrete conditionals, last-eliminated first."""
        self.check_ordering(continuous=False)
        chosen = DiscreteValues()
        for conditional in reversed(self._conditionals):
            if not conditional.is_discrete:
                continue
            discrete = conditional.as_discrete()
            value = discrete.argmax(chosen, tie_break=self.config.tie_break)
            chosen = chosen.extended({discrete.frontal.key: value})
        _logger.debug("Discrete MAP assignment: %s", chosen)
        return chosen

    def optimize(
        self,
        assignment: Optional[Mapping[Key, int]] = None,
    ) -> Union[HybridValues, VectorValues]:
        """
        MAP estimate.

        Without ``assignment`` the discrete MAP is found first and a
        :class:`HybridValues` is returned; with ``assignment`` only the
        continuous back-substitution runs and a :class:`VectorValues` is
        returned.
        """
        self.check_ordering(discrete=False)
        if assignment is not None:
            return self.choose(assignment).optimize()
        discrete = self.optimize_discrete()
        continuous = self.choose(discrete).optimize()
        return HybridValues(continuous=continuous, discrete=discrete)

    def _clamp(self, total: float) -> float:
        return min(total, self.config.pruned_error)

    def error(
        self,
        values: Union[VectorValues, Mapping[Key, object]],
        assignment: Optional[Mapping[Key, int]] = None,
    ) -> Union[float, DecisionTree[float]]:
        """
        Total error of the net.

        With ``assignment`` the scalar sum of every conditional's error is
        returned. Without it the per-conditional error trees are added into one
        tree over all discrete keys of the net. Both forms clamp to
        ``config.pruned_error``, report it for assignments outside
        ``survivors``, and agree for every assignment.
        """
        values = _as_vector_values(values)
        pruned_error = self.config.pruned_error
        if assignment is not None:
            assignment = _as_discrete_values(assignment)
            total = 0.0
            for conditional in self._conditionals:
                total = total + conditional.error(values, assignment, pruned_error)
            if self._is_pruned(assignment):
                return pruned_error
            return self._clamp(total)

        tree: DecisionTree[float] = DecisionTree.constant(0.0, self.discrete_keys)
        for conditional in self._conditionals:
            tree = tree.combine(
                conditional.error_tree(values, pruned_error),
                lambda total, error: total + error,
            )
        return self._mask(tree).apply(self._clamp)

    def discrete_error_tree(self) -> DecisionTree[float]:
        """Sum of ``-log P`` over the discrete conditionals, as a tree over every discrete key."""
        pruned_error = self.config.pruned_error
        tree: DecisionTree[float] = DecisionTree.constant(0.0, self.discrete_keys)
        for conditional in self._conditionals:
            if conditional.is_discrete:
                tree = tree.combine(
                    conditional.as_discrete().error_tree(pruned_error),
                    lambda total, error: total + error,
                )
        return self._mask(tree).apply(self._clamp)

    def prune(self, max_nr_leaves: int) -> "HybridBayesNet":
        """
        Keep the ``max_nr_leaves`` most likely joint discrete assignments.

        Assignments are ranked by :meth:`discrete_error_tree` (ties in
        enumeration order). The discrete MAP is always kept, so ``prune(0)``
        keeps exactly the MAP and ``prune(k)`` never loses it. Branches with no
        surviving extension become inert: mixture leaves are dropped and
        discrete probabilities set to zero, without renormalization. The kept
        set itself is stored as ``survivors`` on the result, so combinations
        of individually live branches that were not kept stay pruned.
        """
        max_nr_leaves = int(max_nr_leaves)
        if max_nr_leaves < 0:
            raise ValueError(f"max_nr_leaves must be non-negative; received {max_nr_leaves}")
        keys = self.discrete_keys
        scores = self.discrete_error_tree()
        ranked = [
            (assignment, score)
            for assignment, score in sorted(scores.items(), key=lambda item: item[1])
            if not self._is_pruned(assignment)
        ]
        if not keys or max_nr_leaves >= len(ranked):
            return HybridBayesNet(self, config=self.config)

        kept: Set[DiscreteValues] = set()
        best = self.optimize_discrete().restricted(dkey.key for dkey in keys)
        if len(best) == len(keys) and not self._is_pruned(best):
            kept.add(best)
        for assignment, _ in ranked:
            if len(kept) >= max_nr_leaves:
                break
            kept.add(assignment)

        survivors: DecisionTree[bool] = DecisionTree.from_function(
            keys, lambda assignment: assignment in kept
        )
        pruned = HybridBayesNet(
            [conditional.prune(survivors) for conditional in self._conditionals],
            config=self.config,
            survivors=survivors,
        )
        _logger.debug("Pruned hybrid Bayes net: kept %d of %d discrete assignments", len(kept), len(ranked))
        return pruned

    # Comparison ----------------------------------------------------------
    def equals(self, other: object, tol: Optional[float] = None) -> bool:
        if not isinstance(other, HybridBayesNet) or len(self) != len(other):
            return False
        tol = self.config.tol if tol is None else tol
        if (self._survivors is None) != (other._survivors is None):
            return False
        if self._survivors is not None and not self._survivors.equals(other._survivors):
            return False
        return all(mine.equals(theirs, tol) for mine, theirs in zip(self, other))

    def __repr__(self) -> str:
        kinds = ", ".join(conditional.kind.value for conditional in self._conditionals)
        return f"HybridBayesNet([{kinds}])"
