from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as _load_version

from .core import serialization
from .core.assignment import DiscreteKey, DiscreteValues, HybridValues, VectorValues
from .core.bayes_net import HybridBayesNet
from .core.conditional import ConditionalKind, HybridConditional
from .core.config import InferenceConfig
from .core.decision_tree import DecisionTree, apply, combine
from .core.discrete import DiscreteConditional
from .core.exceptions import (
    AssignmentIncompleteError,
    DimensionMismatchError,
    HybridError,
    InvalidAssignmentError,
    KeyNotFoundError,
    OrderingError,
    SerializationError,
)
from .core.gaussian import GaussianBayesNet, GaussianConditional
from .core.mixture import GaussianMixture

try:
    __version__ = _load_version("hybridbn")
except PackageNotFoundError:
    __version__ = "0.0.0"

__all__ = [
    "DiscreteKey",
    "DiscreteValues",
    "VectorValues",
    "HybridValues",
    "DecisionTree",
    "combine",
    "apply",
    "GaussianConditional",
    "GaussianBayesNet",
    "DiscreteConditional",
    "GaussianMixture",
    "ConditionalKind",
    "HybridConditional",
    "HybridBayesNet",
    "InferenceConfig",
    "HybridError",
    "KeyNotFoundError",
    "OrderingError",
    "AssignmentIncompleteError",
    "DimensionMismatchError",
    "InvalidAssignmentError",
    "SerializationError",
    "serialization",
    "__version__",
]
