import operator

import pytest

from _switching import switching_bayes_net
from hybridbn import (
    DecisionTree,
    DiscreteConditional,
    DiscreteKey,
    HybridBayesNet,
    InferenceConfig,
    VectorValues,
)

hypothesis = pytest.importorskip("hypothesis")
from hypothesis import given, settings  # noqa: E402
from hypothesis import strategies as st  # noqa: E402

_NET = switching_bayes_net(3)
_PRUNED = _NET.prune(2)

_coordinates = st.floats(min_value=-3.0, max_value=3.0, allow_nan=False, allow_infinity=False)


@st.composite
def continuous_values(draw):
    return VectorValues({key: [draw(_coordinates)] for key in ("x1", "x2", "x3")})


@st.composite
def small_trees(draw):
    names = draw(st.lists(st.sampled_from(["a", "b", "c"]), min_size=0, max_size=3, unique=True))
    keys = [DiscreteKey(name, draw(st.integers(min_value=2, max_value=3))) for name in names]
    size = 1
    for dkey in keys:
        size *= dkey.cardinality
    leaves = draw(st.lists(st.integers(min_value=-5, max_value=5), min_size=size, max_size=size))
    return DecisionTree.from_leaves(keys, leaves)


@settings(max_examples=40, deadline=None)
@given(continuous_values())
def test_error_tree_agrees_with_fixed_assignment_error(values):
    for net in (_NET, _PRUNED):
        tree = net.error(values)
        for assignment, value in tree.items():
            assert value == net.error(values, assignment)


@settings(max_examples=60, deadline=None)
@given(small_trees(), small_trees())
def test_combine_matches_pointwise_evaluation(left, right):
    try:
        total = left.combine(right, operator.sub)
    except ValueError:
        # Same key name drawn with two cardinalities.
        return
    for assignment, value in total.items():
        assert value == left(assignment) - right(assignment)
    assert total.nr_leaves() <= len(list(total.items()))


@settings(max_examples=60, deadline=None)
@given(small_trees())
def test_reduce_sum_matches_explicit_sum(tree):
    for dkey in tree.keys:
        reduced = tree.reduce(dkey.key, operator.add)
        for assignment, value in reduced.items():
            expected = sum(
                tree(assignment.extended({dkey.key: index})) for index in range(dkey.cardinality)
            )
            assert value == expected


@settings(max_examples=40, deadline=None)
@given(
    st.lists(st.integers(min_value=0, max_value=3), min_size=2, max_size=5).filter(
        lambda weights: sum(weights) > 0
    ),
    st.sampled_from(["lowest", "highest"]),
)
def test_tie_break_picks_extreme_index_among_maxima(weights, rule):
    mode = DiscreteKey("m", len(weights))
    signature = "/".join(str(weight) for weight in weights)
    net = HybridBayesNet(
        [DiscreteConditional.from_signature(mode, signature)],
        config=InferenceConfig(tie_break=rule),
    )
    best = max(weights)
    winners = [index for index, weight in enumerate(weights) if weight == best]
    expected = winners[0] if rule == "lowest" else winners[-1]
    assert net.optimize().discrete == {"m": expected}
