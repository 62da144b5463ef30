from __future__ import annotations

import math
from dataclasses import dataclass, replace

__all__ = ["InferenceConfig", "DEFAULT_PRUNED_ERROR"]

DEFAULT_PRUNED_ERROR = 1e50


@dataclass(frozen=True)
class InferenceConfig:
    """
    Switches shared by the query operations of a hybrid Bayes net.

    Key behaviors:
    * ``pruned_error`` is the error reported for a discrete branch that pruning
      removed. It is a large finite value rather than ``inf`` so sums of errors
      stay well defined; totals are clamped to it.
    * ``tol`` is the absolute tolerance used by ``equals`` comparisons.
    * ``tie_break`` picks the winner when several values of a discrete
      conditional share the maximal probability during ``optimize``:
      ``"lowest"`` (default) keeps the smallest value index, ``"highest"`` the
      largest.
    """

    pruned_error: float = DEFAULT_PRUNED_ERROR
    tol: float = 1e-9
    tie_break: str = "lowest"  # "lowest" | "highest"

    def normalized(self) -> "InferenceConfig":
        pruned_error = float(self.pruned_error)
        if not math.isfinite(pruned_error) or pruned_error <= 0.0:
            raise ValueError(
                f"pruned_error must be a positive finite number; received {self.pruned_error!r}"
            )
        tol = float(self.tol)
        if tol < 0.0:
            raise ValueError(f"tol must be non-negative; received {self.tol!r}")
        tie_break = (self.tie_break or "lowest").lower()
        if tie_break not in {"lowest", "highest"}:
            raise ValueError(f"Unsupported tie_break rule: {self.tie_break}")
        return replace(self, pruned_error=pruned_error, tol=tol, tie_break=tie_break)
