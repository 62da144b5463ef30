import os

import numpy as np

from hybridbn import (
    DiscreteConditional,
    DiscreteKey,
    GaussianConditional,
    GaussianMixture,
    HybridBayesNet,
    VectorValues,
    serialization,
)

os.chdir(os.path.dirname(os.path.abspath(__file__)))

# Sensor reading z of a position x; mode 0 = healthy (sigma 0.1), mode 1 = faulty (sigma 3).
mode = DiscreteKey("mode", 2)
reading = GaussianMixture.from_conditionals(
    [mode],
    [
        GaussianConditional.from_mean_and_stddev("z", [0.0], 0.1, parents={"x": np.eye(1)}),
        GaussianConditional.from_mean_and_stddev("z", [0.0], 3.0, parents={"x": np.eye(1)}),
    ],
)
position = GaussianConditional.from_mean_and_stddev("x", [1.5], 0.5)

net = HybridBayesNet([reading, position])
net.add_discrete(mode, "95/5")

best = net.optimize()
print("MAP mode:", best.discrete["mode"])
print("MAP position:", best.continuous["x"], "reading:", best.continuous["z"])

# A reading far from the prior is cheaper to explain with the faulty branch.
outlier = VectorValues({"x": [1.5], "z": [4.0]})
for assignment, error in net.error(outlier).items():
    print(f"error {assignment.to_dict()}: {error:.3f}")

pruned = net.prune(1)
print("Pruned discrete errors:", [error for _, error in pruned.discrete_error_tree().items()])

os.makedirs("runs", exist_ok=True)
path = serialization.save(pruned, "runs/faulty_sensor.npz")
print("Round trip equal:", serialization.load(path).equals(pruned))
