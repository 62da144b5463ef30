from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, Hashable, List, Optional, Sequence

from .core.assignment import DiscreteValues, HybridValues, VectorValues
from .core.bayes_net import HybridBayesNet
from .core.decision_tree import DecisionTree
from .core.exceptions import HybridError
from .core.serialization import load, save


def _parse_key(text: str) -> Hashable:
    return int(text) if text.lstrip("-").isdigit() else text


def _parse_pairs(pairs: Optional[Sequence[str]], flag: str) -> Dict[Hashable, str]:
    parsed: Dict[Hashable, str] = {}
    for pair in pairs or ():
        if "=" not in pair:
            raise SystemExit(f"{flag} expects KEY=VALUE entries; received {pair!r}")
        key, value = pair.split("=", 1)
        parsed[_parse_key(key.strip())] = value.strip()
    return parsed


def _parse_assignment(pairs: Optional[Sequence[str]]) -> Optional[DiscreteValues]:
    if not pairs:
        return None
    return DiscreteValues({key: int(value) for key, value in _parse_pairs(pairs, "--assign").items()})


def _parse_values(pairs: Optional[Sequence[str]]) -> VectorValues:
    values: Dict[Hashable, List[float]] = {}
    for key, value in _parse_pairs(pairs, "--values").items():
        values[key] = [float(part) for part in value.split(",")]
    return VectorValues(values)


def _load_net(path: Path) -> HybridBayesNet:
    if not path.exists():
        raise SystemExit(f"Bayes net file not found: {path}")
    return load(path)


def _emit(payload: Any, out: Optional[Path]) -> None:
    text = json.dumps(payload, indent=2, default=str)
    if out is None:
        print(text)
        return
    out.parent.mkdir(parents=True, exist_ok=True)
    out.write_text(text, encoding="utf-8")


def _tree_payload(tree: DecisionTree[float]) -> List[Dict[str, Any]]:
    return [
        {"assignment": assignment.to_dict(), "error": value}
        for assignment, value in tree.items()
    ]


def _info(net_path: Path) -> None:
    net = _load_net(net_path)
    rows = []
    for index, conditional in enumerate(net):
        rows.append(
            {
                "index": index,
                "kind": conditional.kind.value,
                "frontals": list(conditional.frontals),
                "continuous_parents": list(conditional.continuous_parents),
                "discrete_keys": [list(dkey) for dkey in conditional.discrete_keys],
            }
        )
    _emit({"size": len(net), "conditionals": rows}, None)


def _optimize(net_path: Path, assign: Optional[Sequence[str]], out: Optional[Path]) -> None:
    net = _load_net(net_path)
    assignment = _parse_assignment(assign)
    result = net.optimize(assignment)
    if isinstance(result, HybridValues):
        payload = {
            "discrete": result.discrete.to_dict(),
            "continuous": result.continuous.to_dict(),
        }
    else:
        payload = {"discrete": assignment.to_dict(), "continuous": result.to_dict()}
    _emit(payload, out)


def _prune(net_path: Path, max_leaves: int, out: Path) -> None:
    net = _load_net(net_path)
    pruned = net.prune(max_leaves)
    written = save(pruned, out)
    print(f"Wrote pruned net to {written}")


def _error(
    net_path: Path,
    values: Optional[Sequence[str]],
    assign: Optional[Sequence[str]],
    out: Optional[Path],
) -> None:
    net = _load_net(net_path)
    continuous = _parse_values(values)
    assignment = _parse_assignment(assign)
    if assignment is None:
        _emit({"leaves": _tree_payload(net.error(continuous))}, out)
    else:
        _emit({"error": net.error(continuous, assignment)}, out)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Hybrid Bayes net command line utilities")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="cmd")

    info_parser = subparsers.add_parser("info", help="Describe the conditionals of a net")
    info_parser.add_argument("net", type=Path, help="Serialized net (.json or .npz)")

    optimize_parser = subparsers.add_parser("optimize", help="Compute the MAP estimate")
    optimize_parser.add_argument("net", type=Path, help="Serialized net (.json or .npz)")
    optimize_parser.add_argument(
        "--assign",
        nargs="*",
        default=None,
        help="Fixed discrete assignment as KEY=VALUE; skips the discrete search",
    )
    optimize_parser.add_argument("--out", type=Path, default=None, help="Optional JSON output path")

    prune_parser = subparsers.add_parser("prune", help="Prune unlikely discrete branches")
    prune_parser.add_argument("net", type=Path, help="Serialized net (.json or .npz)")
    prune_parser.add_argument("--max-leaves", type=int, required=True, help="Assignments to keep")
    prune_parser.add_argument("--out", type=Path, required=True, help="Output path (.json or .npz)")

    error_parser = subparsers.add_parser("error", help="Evaluate the error of the net")
    error_parser.add_argument("net", type=Path, help="Serialized net (.json or .npz)")
    error_parser.add_argument(
        "--values",
        nargs="*",
        default=None,
        help="Continuous values as KEY=v1,v2,...",
    )
    error_parser.add_argument(
        "--assign",
        nargs="*",
        default=None,
        help="Discrete assignment as KEY=VALUE; omit to print the whole error tree",
    )
    error_parser.add_argument("--out", type=Path, default=None, help="Optional JSON output path")
    return parser


def main(argv: Optional[list[str]] = None) -> None:
    parser = _build_parser()
    args = parser.parse_args(argv)
    if args.verbose:
        logging.basicConfig(level=logging.DEBUG)

    try:
        if args.cmd == "info":
            _info(args.net)
            return
        if args.cmd == "optimize":
            _optimize(args.net, args.assign, args.out)
            return
        if args.cmd == "prune":
            _prune(args.net, args.max_leaves, args.out)
            return
        if args.cmd == "error":
            _error(args.net, args.values, args.assign, args.out)
            return
    except HybridError as exc:
        raise SystemExit(f"error: {exc}") from exc

    parser.print_help()


if __name__ == "__main__":  # pragma: no cover
    main(sys.argv[1:])
