"""Core modules for hybridbn."""

__all__ = [
    "assignment",
    "bayes_net",
    "conditional",
    "config",
    "decision_tree",
    "discrete",
    "exceptions",
    "gaussian",
    "mixture",
    "serialization",
]
