"""Helpers over the n8n workflow JSON shape.

Workflows stay plain dicts end to end (they are sent to the n8n API as-is):

  {
    "name": "Stripe Gmail Summary",
    "nodes": [
      {
        "name": "Schedule Trigger",
        "type": "n8n-nodes-base.scheduleTrigger",
        "typeVersion": 1,
        "position": [250, 300],
        "parameters": {},
        "credentials": {"gmailOAuth2Api": {"id": "...", "name": "Gmail Account"}}
      }
    ],
    "connections": {
      "Schedule Trigger": {"main": [[{"node": "Gmail", "type": "main", "index": 0}]]}
    },
    "_meta": {"assumptions": [], "suggestions": [], "requiresClarification": []}
  }

Every helper here tolerates malformed input, since graphs come straight from
an LLM.
"""

from __future__ import annotations

from collections.abc import Iterator
from typing import Any

META_KEY = "_meta"

_TRIGGER_MARKERS: tuple[str, ...] = ("trigger", "webhook", "start")


def is_valid_position(position: Any) -> bool:
    """True for a 2-element list/tuple of real numbers (bool excluded)."""
    if not isinstance(position, (list, tuple)) or len(position) != 2:
        return False
    return all(
        isinstance(v, (int, float)) and not isinstance(v, bool) for v in position
    )


def is_trigger_node(node: dict[str, Any]) -> bool:
    """Heuristic: type or name mentions trigger / webhook / start."""
    node_type = str(node.get("type") or "").lower()
    node_name = str(node.get("name") or "").lower()
    return any(m in node_type or m in node_name for m in _TRIGGER_MARKERS)


def iter_connection_targets(outputs: Any) -> Iterator[str]:
    """Yield every target node name under one source's outputs mapping.

    Flattens outputType → output groups → connections. Malformed levels are
    skipped silently; the validator reports them separately.
    """
    if not isinstance(outputs, dict):
        return
    for groups in outputs.values():
        if not isinstance(groups, list):
            continue
        for group in groups:
            if not isinstance(group, list):
                continue
            for conn in group:
                if isinstance(conn, dict) and isinstance(conn.get("node"), str) and conn["node"]:
                    yield conn["node"]


def build_adjacency(graph: dict[str, Any]) -> dict[str, list[str]]:
    """Return {node name → ordered target names}, one key per node."""
    adjacency: dict[str, list[str]] = {}
    for node in graph.get("nodes") or []:
        if isinstance(node, dict) and isinstance(node.get("name"), str):
            adjacency.setdefault(node["name"], [])

    connections = graph.get("connections")
    if isinstance(connections, dict):
        for source, outputs in connections.items():
            adjacency.setdefault(source, []).extend(iter_connection_targets(outputs))
    return adjacency


def get_meta(graph: dict[str, Any]) -> dict[str, Any]:
    meta = graph.get(META_KEY)
    return meta if isinstance(meta, dict) else {}


def clarification_questions(graph: dict[str, Any]) -> list[str]:
    """Return the non-empty requiresClarification entries of a graph."""
    questions = get_meta(graph).get("requiresClarification") or []
    if not isinstance(questions, list):
        return []
    return [str(q) for q in questions if str(q).strip()]


def strip_meta(graph: dict[str, Any]) -> dict[str, Any]:
    """Shallow copy of graph without the _meta block (for the LLM and the API)."""
    return {k: v for k, v in graph.items() if k != META_KEY}
