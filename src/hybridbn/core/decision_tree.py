"""
Decision trees over discrete assignments.

A tree is declared over an ordered tuple of :class:`DiscreteKey` and stores one
leaf per assignment without materializing the Cartesian product: nodes are
hash-consed on construction, a choice whose children are all the same node
collapses to that node, and labels strictly increase along every
root-to-leaf path so two trees can be merged in a single recursive pass.
"""

from __future__ import annotations

import itertools
import math
import operator
import weakref
from typing import (
    Any,
    Callable,
    Dict,
    Generic,
    Hashable,
    Iterator,
    List,
    Mapping,
    Optional,
    Sequence,
    Tuple,
    TypeVar,
    Union,
)

from .assignment import DiscreteKey, DiscreteValues, merge_discrete_keys
from .exceptions import DimensionMismatchError, InvalidAssignmentError, KeyNotFoundError

__all__ = ["DecisionTree", "combine", "apply"]

T = TypeVar("T")
U = TypeVar("U")
Key = Hashable


class _Leaf:
    __slots__ = ("value", "__weakref__")

    def __init__(self, value: Any):
        self.value = value

    def __repr__(self) -> str:
        return f"Leaf({self.value!r})"


class _Choice:
    __slots__ = ("label", "children", "__weakref__")

    def __init__(self, label: Key, children: Tuple[Any, ...]):
        self.label = label
        self.children = children

    def __repr__(self) -> str:
        return f"Choice({self.label!r}, {len(self.children)})"


_Node = Union[_Leaf, _Choice]

# Interned nodes. Values are weak so the table never keeps a tree alive; a
# choice holds its children, so the child ids in its key stay valid.
_INTERN: "weakref.WeakValueDictionary[tuple, Any]" = weakref.WeakValueDictionary()


def _leaf(value: Any) -> _Leaf:
    try:
        intern_key = ("leaf", type(value), value)
        hash(intern_key)
    except TypeError:
        return _Leaf(value)
    node = _INTERN.get(intern_key)
    if node is None:
        node = _Leaf(value)
        _INTERN[intern_key] = node
    return node


def _choice(label: Key, children: Sequence[_Node]) -> _Node:
    children = tuple(children)
    first = children[0]
    if all(child is first for child in children):
        return first
    intern_key = ("choice", label, tuple(id(child) for child in children))
    node = _INTERN.get(intern_key)
    if node is None:
        node = _Choice(label, children)
        _INTERN[intern_key] = node
    return node


def _branch(node: _Node, label: Key, index: int) -> _Node:
    if isinstance(node, _Choice) and node.label == label:
        return node.children[index]
    return node


def _combine_nodes(
    left: _Node,
    right: _Node,
    op: Callable[[Any, Any], Any],
    cardinalities: Mapping[Key, int],
    memo: Optional[Dict[Tuple[int, int], _Node]] = None,
) -> _Node:
    if memo is None:
        memo = {}

    def rec(f: _Node, g: _Node) -> _Node:
        memo_key = (id(f), id(g))
        cached = memo.get(memo_key)
        if cached is not None:
            return cached
        if isinstance(f, _Leaf) and isinstance(g, _Leaf):
            result: _Node = _leaf(op(f.value, g.value))
        else:
            label = min(node.label for node in (f, g) if isinstance(node, _Choice))
            result = _choice(
                label,
                [
                    rec(_branch(f, label, index), _branch(g, label, index))
                    for index in range(cardinalities[label])
                ],
            )
        memo[memo_key] = result
        return result

    return rec(left, right)


def _leaf_equal(a: Any, b: Any, tol: float) -> bool:
    if a is b:
        return True
    if a is None or b is None:
        return False
    if isinstance(a, (int, float)) and isinstance(b, (int, float)):
        if math.isinf(a) or math.isinf(b):
            return a == b
        return abs(float(a) - float(b)) <= tol
    equals = getattr(a, "equals", None)
    if callable(equals):
        return bool(equals(b, tol))
    return bool(a == b)


class DecisionTree(Generic[T]):
    __slots__ = ("_root", "_keys", "_cardinalities")

    def __init__(self, root: _Node, keys: Sequence[DiscreteKey]):
        self._root = root
        self._keys: Tuple[DiscreteKey, ...] = merge_discrete_keys(keys)
        self._cardinalities: Dict[Key, int] = {dkey.key: dkey.cardinality for dkey in self._keys}

    # Construction ---------------------------------------------------------
    @classmethod
    def constant(cls, value: T, keys: Sequence[DiscreteKey] = ()) -> "DecisionTree[T]":
        return cls(_leaf(value), keys)

    @classmethod
    def from_function(
        cls,
        keys: Sequence[DiscreteKey],
        fn: Callable[[DiscreteValues], T],
    ) -> "DecisionTree[T]":
        ordered = merge_discrete_keys(keys)

        def build(depth: int, partial: Dict[Key, int]) -> _Node:
            if depth == len(ordered):
                return _leaf(fn(DiscreteValues(partial)))
            dkey = ordered[depth]
            children = []
            for value in range(dkey.cardinality):
                partial[dkey.key] = value
                children.append(build(depth + 1, partial))
            del partial[dkey.key]
            return _choice(dkey.key, children)

        return cls(build(0, {}), ordered)

    @classmethod
    def from_leaves(cls, keys: Sequence[DiscreteKey], leaves: Sequence[T]) -> "DecisionTree[T]":
        """Build from leaves listed row-major over ``keys`` (first key most significant)."""
        keys = tuple(DiscreteKey(*dkey) for dkey in keys)
        total = 1
        for dkey in keys:
            total *= int(dkey.cardinality)
        leaves = list(leaves)
        if len(leaves) != total:
            raise DimensionMismatchError(
                "Number of leaves does not match the key cardinalities",
                expected=total,
                actual=len(leaves),
            )
        strides: List[int] = []
        stride = 1
        for dkey in reversed(keys):
            strides.append(stride)
            stride *= int(dkey.cardinality)
        strides.reverse()

        def lookup(assignment: DiscreteValues) -> T:
            index = sum(assignment[dkey.key] * step for dkey, step in zip(keys, strides))
            return leaves[index]

        return cls.from_function(keys, lookup)

    # Inspection -----------------------------------------------------------
    @property
    def keys(self) -> Tuple[DiscreteKey, ...]:
        return self._keys

    def with_keys(self, keys: Sequence[DiscreteKey]) -> "DecisionTree[T]":
        """Same nodes declared over ``keys``, which must cover every key the tree branches on."""
        declared = merge_discrete_keys(keys)
        names = {dkey.key for dkey in declared}
        missing = [dkey.key for dkey in self._keys if dkey.key not in names]
        if missing:
            raise KeyNotFoundError("New declaration drops keys of the tree", keys=missing)
        return DecisionTree(self._root, declared)

    def cardinality(self, key: Key) -> int:
        try:
            return self._cardinalities[key]
        except KeyError:
            raise KeyNotFoundError("Decision tree does not contain key", keys=[key]) from None

    def __call__(self, assignment: Mapping[Key, int]) -> T:
        missing = [dkey.key for dkey in self._keys if dkey.key not in assignment]
        if missing:
            raise KeyNotFoundError("Assignment is missing decision tree keys", keys=missing)
        node = self._root
        while isinstance(node, _Choice):
            value = int(assignment[node.label])
            if not 0 <= value < len(node.children):
                raise InvalidAssignmentError(
                    f"Value {value} out of range for discrete key {node.label!r} "
                    f"with cardinality {len(node.children)}"
                )
            node = node.children[value]
        return node.value

    def items(self) -> Iterator[Tuple[DiscreteValues, T]]:
        """Enumerate every assignment of the declared domain, row-major by key."""
        names = [dkey.key for dkey in self._keys]
        for values in itertools.product(*(range(dkey.cardinality) for dkey in self._keys)):
            assignment = DiscreteValues(dict(zip(names, values)))
            yield assignment, self(assignment)

    def assignments(self) -> Iterator[DiscreteValues]:
        for assignment, _ in self.items():
            yield assignment

    def _leaf_nodes(self) -> List[_Leaf]:
        seen = set()
        found: List[_Leaf] = []
        stack = [self._root]
        while stack:
            node = stack.pop()
            if id(node) in seen:
                continue
            seen.add(id(node))
            if isinstance(node, _Leaf):
                found.append(node)
            else:
                stack.extend(reversed(node.children))
        return found

    def leaves(self) -> List[T]:
        return [node.value for node in self._leaf_nodes()]

    def nr_leaves(self) -> int:
        return len(self._leaf_nodes())

    def min(self) -> T:
        return min(self.leaves())

    def max(self) -> T:
        return max(self.leaves())

    # Transformation -------------------------------------------------------
    def apply(self, op: Callable[[T], U]) -> "DecisionTree[U]":
        memo: Dict[int, _Node] = {}

        def rec(node: _Node) -> _Node:
            cached = memo.get(id(node))
            if cached is not None:
                return cached
            if isinstance(node, _Leaf):
                result: _Node = _leaf(op(node.value))
            else:
                result = _choice(node.label, [rec(child) for child in node.children])
            memo[id(node)] = result
            return result

        return DecisionTree(rec(self._root), self._keys)

    def combine(self, other: "DecisionTree[U]", op: Callable[[T, U], Any]) -> "DecisionTree[Any]":
        keys = merge_discrete_keys(self._keys, other._keys)
        cardinalities = {dkey.key: dkey.cardinality for dkey in keys}
        root = _combine_nodes(self._root, other._root, op, cardinalities)
        return DecisionTree(root, keys)

    def reduce(self, key: Key, op: Callable[[T, T], T]) -> "DecisionTree[T]":
        """Fold ``key`` out of the tree by combining its branches with ``op``."""
        cardinality = self.cardinality(key)
        remaining = tuple(dkey for dkey in self._keys if dkey.key != key)
        memo: Dict[int, _Node] = {}
        combine_memo: Dict[Tuple[int, int], _Node] = {}

        def rec(node: _Node) -> _Node:
            cached = memo.get(id(node))
            if cached is not None:
                return cached
            if isinstance(node, _Choice) and node.label < key:
                result = _choice(node.label, [rec(child) for child in node.children])
            else:
                result = _branch(node, key, 0)
                for index in range(1, cardinality):
                    result = _combine_nodes(
                        result,
                        _branch(node, key, index),
                        op,
                        self._cardinalities,
                        combine_memo,
                    )
            memo[id(node)] = result
            return result

        return DecisionTree(rec(self._root), remaining)

    def restrict(self, assignment: Mapping[Key, int]) -> "DecisionTree[T]":
        """Fix every key present in ``assignment``; the other keys stay free."""
        memo: Dict[int, _Node] = {}

        def rec(node: _Node) -> _Node:
            cached = memo.get(id(node))
            if cached is not None:
                return cached
            if isinstance(node, _Leaf):
                result: _Node = node
            elif node.label in assignment:
                value = int(assignment[node.label])
                if not 0 <= value < len(node.children):
                    raise InvalidAssignmentError(
                        f"Value {value} out of range for discrete key {node.label!r}"
                    )
                result = rec(node.children[value])
            else:
                result = _choice(node.label, [rec(child) for child in node.children])
            memo[id(node)] = result
            return result

        remaining = tuple(dkey for dkey in self._keys if dkey.key not in assignment)
        return DecisionTree(rec(self._root), remaining)

    # Comparison / arithmetic ---------------------------------------------
    def equals(self, other: "DecisionTree[Any]", tol: float = 1e-9) -> bool:
        if not isinstance(other, DecisionTree):
            return False
        if self._root is other._root:
            return True
        try:
            same = self.combine(other, lambda a, b: _leaf_equal(a, b, tol))
        except InvalidAssignmentError:
            return False
        return all(same.leaves())

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, DecisionTree):
            return NotImplemented
        return self.equals(other, tol=0.0)

    __hash__ = None  # type: ignore[assignment]

    def __add__(self, other: Any) -> "DecisionTree[Any]":
        if isinstance(other, DecisionTree):
            return self.combine(other, operator.add)
        return self.apply(lambda value: value + other)

    __radd__ = __add__

    def __repr__(self) -> str:
        keys = ", ".join(f"{dkey.key!r}:{dkey.cardinality}" for dkey in self._keys)
        return f"DecisionTree(keys=[{keys}], leaves={self.nr_leaves()})"

    # Flat topology, used by serialization --------------------------------
    def flatten(self) -> Tuple[List[Dict[str, Any]], List[T]]:
        """Return a node table (children before parents, root last) and its leaf values."""
        index_of: Dict[int, int] = {}
        nodes: List[Dict[str, Any]] = []
        leaves: List[T] = []

        def visit(node: _Node) -> int:
            known = index_of.get(id(node))
            if known is not None:
                return known
            if isinstance(node, _Leaf):
                entry: Dict[str, Any] = {"leaf": len(leaves)}
                leaves.append(node.value)
            else:
                entry = {
                    "label": node.label,
                    "children": [visit(child) for child in node.children],
                }
            index_of[id(node)] = len(nodes)
            nodes.append(entry)
            return index_of[id(node)]

        visit(self._root)
        return nodes, leaves

    @classmethod
    def unflatten(
        cls,
        keys: Sequence[DiscreteKey],
        nodes: Sequence[Mapping[str, Any]],
        leaves: Sequence[T],
    ) -> "DecisionTree[T]":
        built: List[_Node] = []
        for entry in nodes:
            if "leaf" in entry:
                built.append(_leaf(leaves[int(entry["leaf"])]))
            else:
                built.append(
                    _choice(entry["label"], [built[int(child)] for child in entry["children"]])
                )
        if not built:
            raise ValueError("Decision tree node table is empty")
        return cls(built[-1], keys)


def combine(
    left: DecisionTree[T],
    right: DecisionTree[U],
    op: Callable[[T, U], Any],
) -> DecisionTree[Any]:
    return left.combine(right, op)


def apply(tree: DecisionTree[T], op: Callable[[T], U]) -> DecisionTree[U]:
    return tree.apply(op)
