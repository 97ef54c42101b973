"""Interchange documents exchanged with the computation task.

A document is a JSON object::

    {"metadata": {"version": 1, "type": "Object", "generator": "vectorcam"},
     "object": {"type": "Group", "uuid": ..., "name": ..., "matrix": [16],
                "userData": {...}, "children": [...]}}

Children are either groups of the same shape or lines
(``{"type": "Line", "uuid", "name", "matrix", "vertices": [[x, y, z], ...],
"userData": {"sourceId": ...}}``).  Matrices are row-major.

A computation result nests further documents in ``userData``: the root may
carry ``"inflated"`` and the inflated document may carry ``"pretty"``.
Decoding follows that chain to a fixed depth and no further.
"""

from __future__ import annotations

import json
import warnings
from pathlib import Path
from typing import Union

import numpy as np

from .errors import InterchangeError
from .geometry import GeometryGroup, LinePrimitive, Node

FORMAT_VERSION = 1

# Sub-document key decoded at each nesting level
NESTED_KEYS = ("inflated", "pretty")
MAX_NESTING_DEPTH = len(NESTED_KEYS)


# ---------------------------------------------------------------------------
# Encoding
# ---------------------------------------------------------------------------


def _encode_matrix(matrix: np.ndarray) -> list[float]:
    return [float(v) for v in np.asarray(matrix).reshape(16)]


def _encode_node(node: Node) -> dict:
    if isinstance(node, LinePrimitive):
        user_data = {"sourceId": node.source_id} if node.source_id else {}
        user_data["color"] = node.color
        return {
            "type": "Line",
            "uuid": node.id,
            "name": node.name,
            "matrix": _encode_matrix(node.matrix),
            "vertices": node.vertices.tolist(),
            "userData": user_data,
        }

    user_data = dict(node.user_data)
    for key, sub in node.nested.items():
        user_data[key] = encode_document(sub)
    return {
        "type": "Group",
        "uuid": node.id,
        "name": node.name,
        "matrix": _encode_matrix(node.matrix),
        "userData": user_data,
        "children": [_encode_node(c) for c in node.children],
    }


def encode_document(group: GeometryGroup) -> dict:
    """Encode *group* (and any nested sub-documents) to a JSON-ready dict."""
    return {
        "metadata": {
            "version": FORMAT_VERSION,
            "type": "Object",
            "generator": "vectorcam",
        },
        "object": _encode_node(group),
    }


def dumps(group: GeometryGroup) -> str:
    return json.dumps(encode_document(group))


# ---------------------------------------------------------------------------
# Decoding
# ---------------------------------------------------------------------------


def _member_dict(obj: dict, key: str) -> dict:
    value = obj.get(key) or {}
    if not isinstance(value, dict):
        raise InterchangeError(f"'{key}' must be an object, got {type(value).__name__}")
    return value


def _decode_node(obj: dict) -> Node:
    if not isinstance(obj, dict):
        raise InterchangeError(f"Expected an object, got {type(obj).__name__}")

    kind = obj.get("type")
    try:
        if kind == "Line":
            user_data = _member_dict(obj, "userData")
            kwargs = {}
            if "color" in user_data:
                kwargs["color"] = int(user_data["color"])
            return LinePrimitive(
                vertices=obj["vertices"],
                matrix=obj.get("matrix"),
                id=str(obj["uuid"]),
                name=obj.get("name", ""),
                source_id=user_data.get("sourceId"),
                **kwargs,
            )
        if kind == "Group":
            children: list[Node] = []
            for child in obj.get("children", []):
                node = _decode_node(child)
                if isinstance(node, LinePrimitive) and len(node.vertices) == 0:
                    warnings.warn(
                        f"Skipping line {node.id} with no vertices",
                        stacklevel=2,
                    )
                    continue
                children.append(node)
            return GeometryGroup(
                children=children,
                matrix=obj.get("matrix"),
                id=str(obj["uuid"]),
                name=obj.get("name", ""),
                user_data=dict(_member_dict(obj, "userData")),
            )
    except (KeyError, TypeError, ValueError) as exc:
        if isinstance(exc, InterchangeError):
            raise
        raise InterchangeError(f"Malformed {kind} node: {exc}") from exc

    raise InterchangeError(f"Unknown node type: {kind!r}")


def decode_document(
    doc: Union[str, bytes, dict],
    depth: int = 0,
) -> GeometryGroup:
    """Decode an interchange document into a :class:`GeometryGroup`.

    Nested sub-documents are decoded recursively, one key per level
    (see :data:`NESTED_KEYS`), and attached to ``group.nested``.  Anything
    nested deeper than :data:`MAX_NESTING_DEPTH` is left as raw user data.

    Raises
    ------
    InterchangeError:
        On invalid JSON, wrong version, or malformed nodes.
    """
    if isinstance(doc, (str, bytes)):
        try:
            doc = json.loads(doc)
        except json.JSONDecodeError as exc:
            raise InterchangeError(f"Invalid JSON: {exc}") from exc
    if not isinstance(doc, dict) or "object" not in doc:
        raise InterchangeError("Document has no 'object' member")

    version = _member_dict(doc, "metadata").get("version", FORMAT_VERSION)
    if version != FORMAT_VERSION:
        raise InterchangeError(f"Unsupported document version: {version!r}")

    root = _decode_node(doc["object"])
    if not isinstance(root, GeometryGroup):
        root = GeometryGroup(children=[root], name=root.name)

    if depth < MAX_NESTING_DEPTH:
        key = NESTED_KEYS[depth]
        sub = root.user_data.pop(key, None)
        if sub is not None:
            root.nested[key] = decode_document(sub, depth + 1)

    return root


def loads(text: Union[str, bytes]) -> GeometryGroup:
    return decode_document(text)


def load_document(path: Path) -> GeometryGroup:
    """Read a geometry document from *path*.

    Raises FileNotFoundError or InterchangeError on failure.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Document not found: {path}")
    return decode_document(path.read_text())


def save_document(group: GeometryGroup, path: Path) -> None:
    Path(path).write_text(json.dumps(encode_document(group), indent=2))
