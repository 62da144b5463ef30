from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Dict, Hashable, Iterable, Iterator, NamedTuple, Optional, Sequence, Tuple

import numpy as np

from .exceptions import DimensionMismatchError, InvalidAssignmentError, KeyNotFoundError

__all__ = [
    "DiscreteKey",
    "DiscreteValues",
    "VectorValues",
    "HybridValues",
    "merge_discrete_keys",
]

Key = Hashable


class DiscreteKey(NamedTuple):
    key: Key
    cardinality: int


def merge_discrete_keys(*groups: Iterable[DiscreteKey]) -> Tuple[DiscreteKey, ...]:
    """Union of discrete keys sorted by key; cardinalities must agree."""
    merged: Dict[Key, int] = {}
    for group in groups:
        for dkey in group:
            dkey = DiscreteKey(*dkey)
            known = merged.get(dkey.key)
            if known is not None and known != dkey.cardinality:
                raise InvalidAssignmentError(
                    f"Discrete key {dkey.key!r} used with cardinalities {known} and {dkey.cardinality}"
                )
            merged[dkey.key] = int(dkey.cardinality)
    return tuple(DiscreteKey(key, merged[key]) for key in sorted(merged))


class DiscreteValues(Mapping):
    """Immutable assignment of integer values to discrete keys."""

    __slots__ = ("_data", "_hash")

    def __init__(self, values: Optional[Mapping[Key, int]] = None, **kwargs: int):
        data: Dict[Key, int] = {}
        for source in (values or {}, kwargs):
            for key, value in source.items():
                index = int(value)
                if index < 0:
                    raise InvalidAssignmentError(
                        f"Discrete value for {key!r} must be non-negative; received {value!r}"
                    )
                data[key] = index
        self._data = data
        self._hash: Optional[int] = None

    def __getitem__(self, key: Key) -> int:
        try:
            return self._data[key]
        except KeyError:
            raise KeyNotFoundError("Discrete assignment is missing key", keys=[key]) from None

    def __iter__(self) -> Iterator[Key]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def __contains__(self, key: object) -> bool:
        return key in self._data

    def __hash__(self) -> int:
        if self._hash is None:
            self._hash = hash(frozenset(self._data.items()))
        return self._hash

    def __eq__(self, other: object) -> bool:
        if isinstance(other, DiscreteValues):
            return self._data == other._data
        if isinstance(other, Mapping):
            return self._data == dict(other)
        return NotImplemented

    def __repr__(self) -> str:
        inner = ", ".join(f"{key!r}: {value}" for key, value in self._data.items())
        return f"DiscreteValues({{{inner}}})"

    def extended(self, other: Optional[Mapping[Key, int]] = None, **kwargs: int) -> "DiscreteValues":
        data = dict(self._data)
        data.update(other or {})
        data.update(kwargs)
        return DiscreteValues(data)

    def restricted(self, keys: Iterable[Key]) -> "DiscreteValues":
        return DiscreteValues({key: self._data[key] for key in keys if key in self._data})

    def missing(self, discrete_keys: Iterable[DiscreteKey]) -> Tuple[Key, ...]:
        return tuple(dkey.key for dkey in discrete_keys if dkey.key not in self._data)

    def to_dict(self) -> Dict[Key, int]:
        return dict(self._data)


class VectorValues(Mapping):
    """Mapping from continuous keys to 1-D float vectors."""

    __slots__ = ("_data",)

    def __init__(self, values: Optional[Mapping[Key, Any]] = None):
        data: Dict[Key, np.ndarray] = {}
        for key, value in (values or {}).items():
            arr = np.array(value, dtype=np.float64).reshape(-1)
            arr.setflags(write=False)
            data[key] = arr
        self._data = data

    def __getitem__(self, key: Key) -> np.ndarray:
        try:
            return self._data[key]
        except KeyError:
            raise KeyNotFoundError("Continuous values are missing key", keys=[key]) from None

    def __iter__(self) -> Iterator[Key]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def __contains__(self, key: object) -> bool:
        return key in self._data

    def __repr__(self) -> str:
        inner = ", ".join(f"{key!r}: {value.tolist()}" for key, value in self._data.items())
        return f"VectorValues({{{inner}}})"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, VectorValues):
            return NotImplemented
        return self.equals(other, tol=0.0)

    __hash__ = None  # type: ignore[assignment]

    def dim(self, key: Key) -> int:
        return int(self[key].shape[0])

    def vector(self, key: Key, dim: int) -> np.ndarray:
        value = self[key]
        if value.shape[0] != dim:
            raise DimensionMismatchError(
                f"Continuous value for {key!r} has the wrong dimension",
                expected=dim,
                actual=int(value.shape[0]),
            )
        return value

    def extended(self, other: Mapping[Key, Any]) -> "VectorValues":
        data: Dict[Key, Any] = dict(self._data)
        data.update(other)
        return VectorValues(data)

    def equals(self, other: "VectorValues", tol: float = 1e-9) -> bool:
        if set(self._data) != set(other._data):
            return False
        for key, value in self._data.items():
            theirs = other._data[key]
            if value.shape != theirs.shape:
                return False
            if not np.allclose(value, theirs, rtol=0.0, atol=tol):
                return False
        return True

    def to_dict(self) -> Dict[Key, list]:
        return {key: value.tolist() for key, value in self._data.items()}

    @classmethod
    def stack(cls, keys: Sequence[Key], dims: Sequence[int], vector: np.ndarray) -> "VectorValues":
        vector = np.asarray(vector, dtype=np.float64).reshape(-1)
        expected = int(sum(dims))
        if vector.shape[0] != expected:
            raise DimensionMismatchError(
                "Stacked vector does not match the declared dimensions",
                expected=expected,
                actual=int(vector.shape[0]),
            )
        data: Dict[Key, np.ndarray] = {}
        offset = 0
        for key, dim in zip(keys, dims):
            data[key] = vector[offset : offset + dim]
            offset += dim
        return cls(data)


@dataclass(frozen=True)
class HybridValues:
    continuous: VectorValues = field(default_factory=VectorValues)
    discrete: DiscreteValues = field(default_factory=DiscreteValues)

    def equals(self, other: "HybridValues", tol: float = 1e-9) -> bool:
        return self.discrete == other.discrete and self.continuous.equals(other.continuous, tol)
