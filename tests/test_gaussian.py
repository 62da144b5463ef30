import math

import numpy as np
import pytest

from hybridbn import (
    DimensionMismatchError,
    GaussianBayesNet,
    GaussianConditional,
    KeyNotFoundError,
    VectorValues,
)


def test_from_mean_and_stddev_matches_density():
    conditional = GaussianConditional.from_mean_and_stddev(
        "x", mean=[1.0], sigma=0.5, parents={"y": np.array([[2.0]])}
    )
    values = VectorValues({"x": [4.0], "y": [1.0]})
    # Residual is (x - 2 y - 1) / sigma = 1 / 0.5 = 2
    assert conditional.whitened_error(values) == pytest.approx([2.0])
    assert conditional.error(values) == pytest.approx(2.0)
    expected_constant = -0.5 * math.log(2.0 * math.pi) + math.log(2.0)
    assert conditional.log_normalization_constant() == pytest.approx(expected_constant)
    assert conditional.log_probability(values) == pytest.approx(expected_constant - 2.0)


def test_solve_back_substitutes_frontals():
    R = np.array([[2.0, 1.0], [0.0, 4.0]])
    d = np.array([3.0, 8.0])
    conditional = GaussianConditional(
        ["x", "z"], R, d, parents=[("y", np.array([[1.0], [0.0]]))], frontal_dims=[1, 1]
    )
    solution = conditional.solve(VectorValues({"y": [1.0]}))
    # 4 z = 8, 2 x + z + y = 3
    assert solution["z"] == pytest.approx([2.0])
    assert solution["x"] == pytest.approx([0.0])
    assert conditional.keys == ("x", "z", "y")


def test_rejects_lower_triangular_and_mismatched_shapes():
    with pytest.raises(ValueError, match="upper triangular"):
        GaussianConditional("x", [[1.0, 0.0], [1.0, 1.0]], [0.0, 0.0], frontal_dims=[2])
    with pytest.raises(DimensionMismatchError):
        GaussianConditional("x", [[1.0]], [0.0, 1.0])
    with pytest.raises(DimensionMismatchError):
        GaussianConditional("x", [[1.0]], [0.0], parents={"y": np.ones((2, 1))})


def test_missing_and_misdimensioned_values_raise():
    conditional = GaussianConditional.from_mean_and_stddev("x", [0.0, 0.0], 1.0)
    with pytest.raises(KeyNotFoundError):
        conditional.error(VectorValues({}))
    with pytest.raises(DimensionMismatchError):
        conditional.error(VectorValues({"x": [1.0]}))


def test_gaussian_bayes_net_optimize_and_error():
    # p(x | y) = N(y + 1, 1), p(y) = N(2, 1)
    net = GaussianBayesNet(
        [
            GaussianConditional.from_mean_and_stddev("x", [1.0], 1.0, parents={"y": [[1.0]]}),
            GaussianConditional.from_mean_and_stddev("y", [2.0], 1.0),
        ]
    )
    solution = net.optimize()
    assert solution.equals(VectorValues({"x": [3.0], "y": [2.0]}))
    assert net.error(solution) == pytest.approx(0.0)
    assert net.error(VectorValues({"x": [3.0], "y": [3.0]})) == pytest.approx(0.5 + 0.5)


def test_values_are_read_only():
    values = VectorValues({"x": [1.0, 2.0]})
    with pytest.raises(ValueError):
        values["x"][0] = 5.0
    conditional = GaussianConditional.from_mean_and_stddev("x", [0.0], 1.0)
    with pytest.raises(ValueError):
        conditional.R[0, 0] = 3.0
