"""
Encoders for hybrid Bayes nets.

Three encodings carry the same content:

* object: nested JSON-ready dictionaries (:func:`to_dict` / :func:`from_dict`);
* text: JSON (:func:`dumps` / :func:`loads`);
* binary: an ``.npz`` archive holding every matrix as its own dataset plus a
  ``meta`` dataset with the JSON description (:func:`to_bytes` /
  :func:`from_bytes`).

Decision trees are stored as a node table (children before parents, root
last) and a list of leaf payloads, so shared subtrees are written once.
"""

from __future__ import annotations

import io
import json
from pathlib import Path
from typing import Any, Dict, Hashable, List, Optional, Union

import numpy as np

from .assignment import DiscreteKey
from .bayes_net import HybridBayesNet
from .conditional import HybridConditional
from .config import InferenceConfig
from .decision_tree import DecisionTree
from .discrete import DiscreteConditional
from .exceptions import SerializationError
from .gaussian import GaussianConditional
from .mixture import GaussianMixture

__all__ = [
    "SCHEMA",
    "FORMAT_VERSION",
    "to_dict",
    "from_dict",
    "dumps",
    "loads",
    "to_bytes",
    "from_bytes",
    "save",
    "load",
]

SCHEMA = "hybridbn.bayes_net"
FORMAT_VERSION = 1
_META_DATASET = "meta"


class _ArrayStore:
    """Collects arrays inline (object/text encodings) or as npz datasets (binary)."""

    def __init__(self, arrays: Optional[Dict[str, np.ndarray]] = None, inline: bool = True):
        self.arrays: Dict[str, np.ndarray] = arrays if arrays is not None else {}
        self.inline = inline

    def put(self, array: np.ndarray) -> Dict[str, Any]:
        array = np.asarray(array, dtype=np.float64)
        if self.inline:
            return {"shape": list(array.shape), "data": array.reshape(-1).tolist()}
        dataset = f"array_{len(self.arrays)}"
        self.arrays[dataset] = array
        return {"dataset": dataset}

    def get(self, entry: Dict[str, Any]) -> np.ndarray:
        if "dataset" in entry:
            array = self.arrays.get(entry["dataset"])
            if array is None:
                raise SerializationError(f"Missing dataset {entry['dataset']!r} in binary payload")
            return np.asarray(array, dtype=np.float64)
        try:
            return np.asarray(entry["data"], dtype=np.float64).reshape(entry["shape"])
        except (KeyError, ValueError) as exc:
            raise SerializationError(f"Malformed array entry: {exc}") from exc


def _check_key(key: Hashable) -> Hashable:
    if isinstance(key, bool) or not isinstance(key, (str, int)):
        raise SerializationError(f"Only str and int keys can be serialized; received {key!r}")
    return key


def _encode_dkey(dkey: DiscreteKey) -> List[Any]:
    return [_check_key(dkey.key), int(dkey.cardinality)]


def _decode_dkey(entry: List[Any]) -> DiscreteKey:
    key, cardinality = entry
    return DiscreteKey(key, int(cardinality))


def _encode_gaussian(conditional: GaussianConditional, store: _ArrayStore) -> Dict[str, Any]:
    return {
        "frontals": [_check_key(key) for key in conditional.frontals],
        "frontal_dims": [conditional.dim(key) for key in conditional.frontals],
        "parents": [_check_key(key) for key in conditional.parents],
        "R": store.put(conditional.R),
        "d": store.put(conditional.d),
        "S": [store.put(block) for block in conditional.S],
    }


def _decode_gaussian(entry: Dict[str, Any], store: _ArrayStore) -> GaussianConditional:
    blocks = [store.get(block) for block in entry["S"]]
    return GaussianConditional(
        list(entry["frontals"]),
        store.get(entry["R"]),
        store.get(entry["d"]),
        parents=list(zip(entry["parents"], blocks)),
        frontal_dims=entry["frontal_dims"],
    )


def _encode_tree(tree: DecisionTree[Any], encode_leaf) -> Dict[str, Any]:
    nodes, leaves = tree.flatten()
    for node in nodes:
        if "label" in node:
            _check_key(node["label"])
    return {
        "keys": [_encode_dkey(dkey) for dkey in tree.keys],
        "nodes": nodes,
        "leaves": [encode_leaf(leaf) for leaf in leaves],
    }


def _decode_tree(entry: Dict[str, Any], decode_leaf) -> DecisionTree[Any]:
    keys = [_decode_dkey(dkey) for dkey in entry["keys"]]
    leaves = [decode_leaf(leaf) for leaf in entry["leaves"]]
    return DecisionTree.unflatten(keys, entry["nodes"], leaves)


def _encode_conditional(conditional: HybridConditional, store: _ArrayStore) -> Dict[str, Any]:
    if conditional.is_discrete:
        discrete = conditional.as_discrete()
        return {
            "type": "discrete",
            "frontal": _encode_dkey(discrete.frontal),
            "parents": [_encode_dkey(parent) for parent in discrete.parents],
            "table": store.put(discrete.table),
        }
    if conditional.is_continuous:
        payload = _encode_gaussian(conditional.as_gaussian(), store)
        payload["type"] = "gaussian"
        return payload
    mixture = conditional.as_mixture()

    def encode_leaf(leaf: Optional[GaussianConditional]) -> Optional[Dict[str, Any]]:
        return None if leaf is None else _encode_gaussian(leaf, store)

    return {
        "type": "mixture",
        "discrete_keys": [_encode_dkey(dkey) for dkey in mixture.discrete_keys],
        "log_constant": mixture.log_constant,
        "tree": _encode_tree(mixture.conditionals, encode_leaf),
    }


def _decode_conditional(entry: Dict[str, Any], store: _ArrayStore) -> HybridConditional:
    kind = entry.get("type")
    if kind == "discrete":
        conditional = DiscreteConditional(
            _decode_dkey(entry["frontal"]),
            store.get(entry["table"]),
            [_decode_dkey(parent) for parent in entry["parents"]],
        )
        return HybridConditional.wrap(conditional)
    if kind == "gaussian":
        return HybridConditional.wrap(_decode_gaussian(entry, store))
    if kind == "mixture":

        def decode_leaf(leaf: Optional[Dict[str, Any]]) -> Optional[GaussianConditional]:
            return None if leaf is None else _decode_gaussian(leaf, store)

        mixture = GaussianMixture(
            [_decode_dkey(dkey) for dkey in entry["discrete_keys"]],
            _decode_tree(entry["tree"], decode_leaf),
            log_constant=float(entry["log_constant"]),
        )
        return HybridConditional.wrap(mixture)
    raise SerializationError(f"Unknown conditional type {kind!r}")


def _encode(net: HybridBayesNet, store: _ArrayStore) -> Dict[str, Any]:
    return {
        "schema": SCHEMA,
        "version": FORMAT_VERSION,
        "config": {
            "pruned_error": net.config.pruned_error,
            "tol": net.config.tol,
            "tie_break": net.config.tie_break,
        },
        "conditionals": [_encode_conditional(conditional, store) for conditional in net],
        "survivors": None if net.survivors is None else _encode_tree(net.survivors, bool),
    }


def _decode(data: Dict[str, Any], store: _ArrayStore) -> HybridBayesNet:
    if not isinstance(data, dict) or data.get("schema") != SCHEMA:
        raise SerializationError("Payload is not a serialized hybrid Bayes net")
    if data.get("version") != FORMAT_VERSION:
        raise SerializationError(f"Unsupported format version {data.get('version')!r}")
    config = InferenceConfig(**data.get("config", {}))
    try:
        conditionals = [_decode_conditional(entry, store) for entry in data["conditionals"]]
    except (KeyError, TypeError) as exc:
        raise SerializationError(f"Malformed conditional entry: {exc}") from exc
    survivors = None
    if data.get("survivors") is not None:
        try:
            survivors = _decode_tree(data["survivors"], bool)
        except (KeyError, TypeError, ValueError) as exc:
            raise SerializationError(f"Malformed survivor tree: {exc}") from exc
    return HybridBayesNet(conditionals, config=config, survivors=survivors)


def to_dict(net: HybridBayesNet) -> Dict[str, Any]:
    return _encode(net, _ArrayStore())


def from_dict(data: Dict[str, Any]) -> HybridBayesNet:
    return _decode(data, _ArrayStore())


def dumps(net: HybridBayesNet, indent: Optional[int] = None) -> str:
    return json.dumps(to_dict(net), indent=indent)


def loads(text: str) -> HybridBayesNet:
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise SerializationError(f"Invalid JSON payload: {exc}") from exc
    return from_dict(data)


def to_bytes(net: HybridBayesNet) -> bytes:
    store = _ArrayStore(inline=False)
    meta = json.dumps(_encode(net, store)).encode("utf-8")
    arrays = dict(store.arrays)
    arrays[_META_DATASET] = np.frombuffer(meta, dtype=np.uint8).copy()
    buffer = io.BytesIO()
    np.savez(buffer, **arrays)
    return buffer.getvalue()


def from_bytes(blob: bytes) -> HybridBayesNet:
    try:
        with np.load(io.BytesIO(blob), allow_pickle=False) as data:
            arrays = {name: data[name] for name in data.files}
    except (OSError, ValueError) as exc:
        raise SerializationError(f"Invalid binary payload: {exc}") from exc
    meta = arrays.pop(_META_DATASET, None)
    if meta is None:
        raise SerializationError("Binary payload has no metadata")
    try:
        data = json.loads(bytes(np.asarray(meta, dtype=np.uint8).tobytes()).decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise SerializationError(f"Invalid binary metadata: {exc}") from exc
    return _decode(data, _ArrayStore(arrays, inline=False))


def save(net: HybridBayesNet, path: Union[str, Path]) -> Path:
    """Write ``net`` as JSON text (``.json``) or an npz archive (any other suffix)."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    if path.suffix.lower() == ".json":
        path.write_text(dumps(net, indent=2), encoding="utf-8")
    else:
        path.write_bytes(to_bytes(net))
    return path


def load(path: Union[str, Path]) -> HybridBayesNet:
    path = Path(path)
    if path.suffix.lower() == ".json":
        return loads(path.read_text(encoding="utf-8"))
    return from_bytes(path.read_bytes())
