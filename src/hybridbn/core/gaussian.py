from __future__ import annotations

import math
from typing import Dict, Hashable, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np

from .assignment import VectorValues
from .exceptions import DimensionMismatchError

__all__ = ["GaussianConditional", "GaussianBayesNet"]

Key = Hashable
ParentSpec = Union[Mapping[Key, np.ndarray], Sequence[Tuple[Key, np.ndarray]], None]

_LOG_2PI = math.log(2.0 * math.pi)


class GaussianConditional:
    """
    Conditional density p(frontals | parents) as a whitened triangular system.

    The density is ``N(R x + sum_j S_j y_j; d, I)`` where ``x`` stacks the
    frontal variables, ``y_j`` are the parents and ``R`` is upper triangular
    with a non-zero diagonal.
    """

    __slots__ = ("_frontals", "_parents", "_dims", "_R", "_S", "_d")

    def __init__(
        self,
        frontals: Union[Key, Sequence[Key]],
        R: np.ndarray,
        d: np.ndarray,
        parents: ParentSpec = None,
        frontal_dims: Optional[Sequence[int]] = None,
    ):
        if isinstance(frontals, (list, tuple)):
            frontal_keys = tuple(frontals)
        else:
            frontal_keys = (frontals,)
        if not frontal_keys:
            raise ValueError("GaussianConditional requires at least one frontal variable")

        R = np.array(R, dtype=np.float64, ndmin=2)
        if R.ndim != 2 or R.shape[0] != R.shape[1]:
            raise DimensionMismatchError(f"R must be a square matrix; received shape {R.shape}")
        n = R.shape[0]
        if not np.allclose(np.tril(R, -1), 0.0):
            raise ValueError("R must be upper triangular")
        if np.any(np.diag(R) == 0.0):
            raise ValueError("R must have a non-zero diagonal")
        d = np.array(d, dtype=np.float64).reshape(-1)
        if d.shape[0] != n:
            raise DimensionMismatchError("d does not match R", expected=n, actual=d.shape[0])

        if frontal_dims is None:
            if len(frontal_keys) != 1:
                raise ValueError("frontal_dims is required when there are several frontal variables")
            frontal_dims = (n,)
        frontal_dims = tuple(int(dim) for dim in frontal_dims)
        if len(frontal_dims) != len(frontal_keys) or sum(frontal_dims) != n:
            raise DimensionMismatchError(
                "frontal_dims do not add up to the size of R",
                expected=n,
                actual=sum(frontal_dims),
            )

        items = list(parents.items()) if isinstance(parents, Mapping) else list(parents or ())
        parent_keys: List[Key] = []
        blocks: List[np.ndarray] = []
        dims: Dict[Key, int] = dict(zip(frontal_keys, frontal_dims))
        for key, block in items:
            if key in dims:
                raise ValueError(f"Variable {key!r} appears more than once in the conditional")
            block = np.array(block, dtype=np.float64, ndmin=2)
            if block.shape[0] != n:
                raise DimensionMismatchError(
                    f"Parent block for {key!r} has the wrong number of rows",
                    expected=n,
                    actual=block.shape[0],
                )
            parent_keys.append(key)
            blocks.append(block)
            dims[key] = block.shape[1]

        for arr in [R, d, *blocks]:
            arr.setflags(write=False)
        self._frontals = frontal_keys
        self._parents = tuple(parent_keys)
        self._dims = dims
        self._R = R
        self._S = tuple(blocks)
        self._d = d

    @classmethod
    def from_mean_and_stddev(
        cls,
        key: Key,
        mean: np.ndarray,
        sigma: float,
        parents: ParentSpec = None,
    ) -> "GaussianConditional":
        """p(x | y) = N(x; sum_j A_j y_j + mean, sigma^2 I)."""
        mean = np.array(mean, dtype=np.float64).reshape(-1)
        n = mean.shape[0]
        items = list(parents.items()) if isinstance(parents, Mapping) else list(parents or ())
        scaled = [(parent, -np.array(A, dtype=np.float64, ndmin=2) / sigma) for parent, A in items]
        return cls(key, np.eye(n) / sigma, mean / sigma, parents=scaled)

    @property
    def frontals(self) -> Tuple[Key, ...]:
        return self._frontals

    @property
    def parents(self) -> Tuple[Key, ...]:
        return self._parents

    @property
    def keys(self) -> Tuple[Key, ...]:
        return self._frontals + self._parents

    @property
    def R(self) -> np.ndarray:
        return self._R

    @property
    def S(self) -> Tuple[np.ndarray, ...]:
        return self._S

    @property
    def d(self) -> np.ndarray:
        return self._d

    def dim(self, key: Key) -> int:
        return self._dims[key]

    @property
    def dims(self) -> Dict[Key, int]:
        return dict(self._dims)

    def _parent_term(self, values: VectorValues) -> np.ndarray:
        total = np.zeros_like(self._d)
        for key, block in zip(self._parents, self._S):
            total = total + block @ values.vector(key, block.shape[1])
        return total

    def _stack_frontals(self, values: VectorValues) -> np.ndarray:
        return np.concatenate([values.vector(key, self._dims[key]) for key in self._frontals])

    def whitened_error(self, values: VectorValues) -> np.ndarray:
        return self._R @ self._stack_frontals(values) + self._parent_term(values) - self._d

    def error(self, values: VectorValues) -> float:
        residual = self.whitened_error(values)
        return 0.5 * float(residual @ residual)

    def log_normalization_constant(self) -> float:
        n = self._R.shape[0]
        return -0.5 * n * _LOG_2PI + float(np.sum(np.log(np.abs(np.diag(self._R)))))

    def log_probability(self, values: VectorValues) -> float:
        return self.log_normalization_constant() - self.error(values)

    def solve(self, parent_values: VectorValues) -> VectorValues:
        """Back-substitute the frontal variables given values for every parent."""
        rhs = self._d - self._parent_term(parent_values)
        solution = np.linalg.solve(self._R, rhs)
        return VectorValues.stack(
            self._frontals,
            [self._dims[key] for key in self._frontals],
            solution,
        )

    def equals(self, other: object, tol: float = 1e-9) -> bool:
        if not isinstance(other, GaussianConditional):
            return False
        if self._frontals != other._frontals or self._parents != other._parents:
            return False
        if self._dims != other._dims:
            return False
        arrays = zip((self._R, self._d, *self._S), (other._R, other._d, *other._S))
        return all(np.allclose(mine, theirs, rtol=0.0, atol=tol) for mine, theirs in arrays)

    def __repr__(self) -> str:
        frontals = ", ".join(repr(key) for key in self._frontals)
        parents = ", ".join(repr(key) for key in self._parents)
        return f"GaussianConditional(p({frontals} | {parents}))"


class GaussianBayesNet:
    """Ordered Gaussian conditionals; parents of entry ``i`` are frontals at later positions."""

    def __init__(self, conditionals: Optional[Iterable[GaussianConditional]] = None):
        self._conditionals: List[GaussianConditional] = list(conditionals or ())

    def push_back(self, conditional: GaussianConditional) -> None:
        self._conditionals.append(conditional)

    def __len__(self) -> int:
        return len(self._conditionals)

    def __iter__(self) -> Iterator[GaussianConditional]:
        return iter(self._conditionals)

    def __getitem__(self, index: int) -> GaussianConditional:
        return self._conditionals[index]

    def at(self, index: int) -> GaussianConditional:
        return self._conditionals[index]

    def optimize(self) -> VectorValues:
        solution: Dict[Key, np.ndarray] = {}
        for conditional in reversed(self._conditionals):
            frontal_values = conditional.solve(VectorValues(solution))
            solution.update(frontal_values.items())
        return VectorValues(solution)

    def error(self, values: VectorValues) -> float:
        return float(sum(conditional.error(values) for conditional in self._conditionals))

    def log_probability(self, values: VectorValues) -> float:
        return float(sum(conditional.log_probability(values) for conditional in self._conditionals))

    def equals(self, other: object, tol: float = 1e-9) -> bool:
        if not isinstance(other, GaussianBayesNet) or len(self) != len(other):
            return False
        return all(mine.equals(theirs, tol) for mine, theirs in zip(self, other))

    def __repr__(self) -> str:
        return f"GaussianBayesNet(size={len(self)})"
