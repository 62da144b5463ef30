import itertools
import math

import numpy as np
import pytest

from _switching import linear_factors, linearization_point, switching_bayes_net
from hybridbn import (
    AssignmentIncompleteError,
    DiscreteConditional,
    DiscreteKey,
    DiscreteValues,
    GaussianConditional,
    GaussianMixture,
    HybridBayesNet,
    HybridValues,
    InferenceConfig,
    KeyNotFoundError,
    OrderingError,
    VectorValues,
)

ASIA = DiscreteKey("asia", 2)


def test_add_discrete_conditional():
    net = HybridBayesNet()
    net.add_discrete(ASIA, "99/1")
    assert len(net) == 1
    expected = DiscreteConditional.from_signature(ASIA, "99/1")
    assert net.at_discrete(0).equals(expected)
    assert net.discrete_keys == (ASIA,)
    assert net.continuous_keys == ()
    with pytest.raises(TypeError):
        net.at_mixture(0)


def test_push_back_accepts_payloads_and_nets():
    net = HybridBayesNet()
    net.push_back(GaussianConditional.from_mean_and_stddev("x", [0.0], 1.0))
    other = HybridBayesNet([DiscreteConditional.from_signature(ASIA, "1/1")])
    net.push_back(other)
    assert [conditional.kind.value for conditional in net] == ["gaussian", "discrete"]
    assert len(other) == 1


def test_choose_collapses_every_mixture():
    net = switching_bayes_net(4, include_discrete=False)
    assignment = DiscreteValues({"m1": 1, "m2": 1, "m3": 0})
    gaussian_net = net.choose(assignment)
    assert len(gaussian_net) == 4
    for index in range(4):
        assert gaussian_net.at(index) is net.at_mixture(index)(assignment)


def test_choose_requires_every_mixture_key():
    net = switching_bayes_net(4)
    with pytest.raises(AssignmentIncompleteError) as excinfo:
        net.choose({"m1": 0, "m2": 1})
    assert excinfo.value.keys == ("m3",)
    assert isinstance(excinfo.value, KeyNotFoundError)


def test_choose_drops_discrete_and_keeps_plain_gaussians():
    mode = DiscreteKey("m", 2)
    mixture = GaussianMixture.from_conditionals(
        [mode],
        [
            GaussianConditional.from_mean_and_stddev("x", [0.0], 1.0, parents={"y": [[1.0]]}),
            GaussianConditional.from_mean_and_stddev("x", [5.0], 1.0, parents={"y": [[1.0]]}),
        ],
    )
    prior = GaussianConditional.from_mean_and_stddev("y", [1.0], 1.0)
    net = HybridBayesNet([mixture, prior, DiscreteConditional.from_signature(mode, "1/4")])
    gaussian_net = net.choose({"m": 1})
    assert len(gaussian_net) == 2
    assert gaussian_net.at(1) is prior
    solution = net.optimize({"m": 1})
    assert solution.equals(VectorValues({"x": [6.0], "y": [1.0]}))


def test_optimize_with_fixed_assignment():
    net = switching_bayes_net(4)
    delta = net.optimize({"m1": 1, "m2": 1, "m3": 1})
    assert isinstance(delta, VectorValues)
    for key in ("x1", "x2", "x3", "x4"):
        assert delta[key][0] == pytest.approx(-1.0, abs=1e-9)


def test_optimize_matches_back_substitution_of_chosen_net():
    net = switching_bayes_net(3)
    for assignment in net.discrete_error_tree().assignments():
        assert net.optimize(assignment).equals(net.choose(assignment).optimize(), tol=0.0)


def test_optimize_finds_switching_map():
    net = switching_bayes_net(4)
    result = net.optimize()
    assert isinstance(result, HybridValues)
    assert result.discrete == {"m1": 1, "m2": 0, "m3": 1}
    expected = {"x1": -0.999904, "x2": -0.990291, "x3": -1.009709, "x4": -1.000096}
    for key, value in expected.items():
        assert result.continuous[key][0] == pytest.approx(value, abs=1e-4)
    # Estimates relative to the linearization point.
    poses = {key: linearization_point(4)[key] + result.continuous[key][0] for key in expected}
    assert poses["x2"] == pytest.approx(1.0097, abs=1e-4)


def test_optimize_tie_break_is_configurable():
    mode = DiscreteKey("m", 3)
    conditional = DiscreteConditional.from_signature(mode, "2/1/2")
    assert HybridBayesNet([conditional]).optimize().discrete == {"m": 0}
    highest = HybridBayesNet([conditional], config=InferenceConfig(tie_break="highest"))
    assert highest.optimize().discrete == {"m": 2}


def test_optimize_rejects_parents_solved_too_late():
    net = HybridBayesNet(
        [
            GaussianConditional.from_mean_and_stddev("y", [1.0], 1.0),
            GaussianConditional.from_mean_and_stddev("x", [0.0], 1.0, parents={"y": [[1.0]]}),
        ]
    )
    with pytest.raises(OrderingError) as excinfo:
        net.optimize()
    assert excinfo.value.keys == ("y",)
    with pytest.raises(OrderingError):
        net.check_ordering()

    mode = DiscreteKey("m", 2)
    late = HybridBayesNet(
        [
            DiscreteConditional.from_signature(mode, "1/1"),
            DiscreteConditional.from_signature(ASIA, "1/3 3/1", [mode]),
        ]
    )
    with pytest.raises(OrderingError, match="'m'"):
        late.optimize_discrete()
    switching_bayes_net(4).check_ordering()


# Leaves of the 3-step error tree at the MAP continuous estimate, derived by
# hand from the closed-form least-squares solution (x2 - x1 = -203/10403).
SWITCHING_3_ERRORS = {
    (0, 0): 2.360564150272,
    (0, 1): 1.157804357965,
    (1, 0): 1.292291087217,
    (1, 1): 1.188143583578,
}


def _reference_errors(K, estimate):
    """Error leaves from the stacked whitened system of every mode, no elimination."""
    names = [f"x{k}" for k in range(1, K + 1)]
    point = np.array([estimate[name][0] for name in names])
    chain = np.array([[1.0 / 3.0, 2.0 / 3.0], [3.0 / 5.0, 2.0 / 5.0]])
    stacked = {}
    for values in itertools.product(range(2), repeat=K - 1):
        rows, rhs = [], []
        for keys, A, b in linear_factors(K, {f"m{k}": v for k, v in enumerate(values, 1)}):
            block = np.zeros((A.shape[0], K))
            for j, key in enumerate(keys):
                block[:, names.index(key)] = A[:, j]
            rows.append(block)
            rhs.append(b)
        A, b = np.vstack(rows), np.concatenate(rhs)
        best = np.linalg.lstsq(A, b, rcond=None)[0]
        prior = 0.5 * np.prod([chain[values[k], values[k + 1]] for k in range(K - 2)])
        stacked[values] = (
            0.5 * float(np.sum((A @ point - b) ** 2)),
            0.5 * float(np.sum((A @ best - b) ** 2)),
            float(prior),
        )
    log_evidence = math.log(sum(prior * math.exp(-leftover) for _, leftover, prior in stacked.values()))
    return {
        values: error - math.log(prior) + log_evidence
        for values, (error, _, prior) in stacked.items()
    }


def test_error_tree_regression_values():
    net = switching_bayes_net(3)
    values = net.optimize().continuous
    tree = net.error(values)
    reference = _reference_errors(3, values)
    for (m1, m2), expected in SWITCHING_3_ERRORS.items():
        leaf = tree({"m1": m1, "m2": m2})
        assert leaf == pytest.approx(expected, abs=1e-6)
        assert leaf == pytest.approx(reference[(m1, m2)], abs=1e-9)


def test_pruned_error_tree_regression_values():
    net = switching_bayes_net(3)
    values = net.optimize().continuous
    tree = net.prune(2).error(values)
    reference = _reference_errors(3, values)
    for (m1, m2), expected in SWITCHING_3_ERRORS.items():
        leaf = tree({"m1": m1, "m2": m2})
        if m2 == 1:
            assert leaf == pytest.approx(expected, abs=1e-6)
            assert leaf == pytest.approx(reference[(m1, m2)], abs=1e-9)
        else:
            assert leaf == 1e50


def test_error_tree_matches_sum_of_conditionals():
    net = switching_bayes_net(3)
    values = VectorValues({"x1": [0.5], "x2": [-0.25], "x3": [1.0]})
    assignment = DiscreteValues({"m1": 1, "m2": 1})
    tree = net.error(values)
    expected = 0.0
    for conditional in net:
        expected += conditional.error(values, assignment)
    assert tree(assignment) == pytest.approx(expected, abs=1e-9)
    assert net.error(values, assignment) == pytest.approx(expected, abs=1e-9)


def test_error_of_discrete_part_is_negative_log_probability():
    net = switching_bayes_net(3)
    values = net.optimize().continuous
    discrete_tree = net.discrete_error_tree()
    total = sum(math.exp(-value) for _, value in discrete_tree.items())
    assert total == pytest.approx(1.0)
    assert discrete_tree.keys == net.discrete_keys
    with pytest.raises(KeyNotFoundError):
        net.error(VectorValues({"x1": values["x1"]}), {"m1": 0, "m2": 0})


def test_prune_preserves_optimum():
    net = switching_bayes_net(4)
    pruned = net.prune(2)
    assert len(pruned) == len(net)
    original = net.optimize()
    result = pruned.optimize()
    assert result.discrete == original.discrete
    assert result.continuous.equals(original.continuous, tol=1e-9)
    finite = [value for _, value in pruned.discrete_error_tree().items() if value < 1e50]
    assert len(finite) == 2


def test_prune_keeps_surviving_errors_and_marks_the_rest():
    net = switching_bayes_net(3)
    values = net.optimize().continuous
    full = net.error(values)
    pruned = net.prune(2)
    pruned_tree = pruned.error(values)

    kept = [assignment for assignment, value in pruned_tree.items() if value < 1e50]
    assert len(kept) == 2
    assert net.optimize_discrete() in kept
    for assignment, value in pruned_tree.items():
        if assignment in kept:
            assert value == full(assignment)
        else:
            assert value == 1e50
            assert pruned.error(values, assignment) == 1e50
            with pytest.raises(AssignmentIncompleteError):
                pruned.choose(assignment)


def test_prune_leaves_original_untouched():
    net = switching_bayes_net(3)
    snapshot = HybridBayesNet(net)
    net.prune(1)
    assert net.equals(snapshot)


def test_prune_rejects_negative_and_keeps_everything_when_large():
    net = switching_bayes_net(3)
    with pytest.raises(ValueError):
        net.prune(-1)
    assert net.prune(4).equals(net)
    assert net.prune(100).equals(net)


def test_prune_zero_keeps_only_the_map():
    net = switching_bayes_net(3)
    pruned = net.prune(0)
    survivors = [
        assignment for assignment, value in pruned.discrete_error_tree().items() if value < 1e50
    ]
    assert survivors == [net.optimize_discrete()]
    assert pruned.config == net.config


def _independent_modes_net() -> HybridBayesNet:
    a, b = DiscreteKey("a", 2), DiscreteKey("b", 2)
    mixture_x = GaussianMixture.from_conditionals(
        [a],
        [
            GaussianConditional.from_mean_and_stddev("x", [0.0], 1.0),
            GaussianConditional.from_mean_and_stddev("x", [1.0], 1.0),
        ],
    )
    mixture_y = GaussianMixture.from_conditionals(
        [b],
        [
            GaussianConditional.from_mean_and_stddev("y", [0.0], 1.0),
            GaussianConditional.from_mean_and_stddev("y", [1.0], 1.0),
        ],
    )
    return HybridBayesNet(
        [
            mixture_x,
            mixture_y,
            DiscreteConditional.from_signature(a, "6/4"),
            DiscreteConditional.from_signature(b, "6/4"),
        ]
    )


def test_prune_removes_joint_assignments_not_kept():
    # Every branch of each mixture survives on its own, but {a=1, b=1} was not kept.
    net = _independent_modes_net()
    pruned = net.prune(3)
    values = VectorValues({"x": [1.0], "y": [1.0]})
    tree = pruned.error(values)
    kept = sorted(
        (assignment["a"], assignment["b"]) for assignment, value in tree.items() if value < 1e50
    )
    assert kept == [(0, 0), (0, 1), (1, 0)]
    dropped = {"a": 1, "b": 1}
    assert tree(dropped) == 1e50
    assert pruned.error(values, dropped) == 1e50
    assert pruned.discrete_error_tree()(dropped) == 1e50
    with pytest.raises(AssignmentIncompleteError):
        pruned.choose(dropped)
    assert pruned.error(values, {"a": 1, "b": 0}) == pytest.approx(
        net.error(values, {"a": 1, "b": 0})
    )
    assert pruned.survivors is not None and net.survivors is None

    # Pruning again never revives it.
    assert pruned.prune(3).error(values)(dropped) == 1e50
    assert pruned.prune(2).error(values)(dropped) == 1e50
    assert not pruned.equals(net.prune(4))


def test_config_validation():
    with pytest.raises(ValueError, match="tie_break"):
        InferenceConfig(tie_break="random").normalized()
    with pytest.raises(ValueError, match="pruned_error"):
        InferenceConfig(pruned_error=float("inf")).normalized()
    with pytest.raises(ValueError, match="tol"):
        InferenceConfig(tol=-1.0).normalized()
    assert InferenceConfig(tie_break="HIGHEST").normalized().tie_break == "highest"
    np.testing.assert_equal(InferenceConfig().pruned_error, 1e50)
