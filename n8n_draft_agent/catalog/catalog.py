"""NodeCatalog — local n8n node-type catalog with keyword search.

The catalog is a JSON array of n8n node type descriptions (the shape returned
by n8n's /node-types endpoint, trimmed to name, displayName, description,
group, version, properties, credentials). A small snapshot ships with the
package; CATALOG_PATH points at a fuller one.

Scoring per keyword (case-insensitive, summed over keywords):
  exact name / displayName           10  (no further points for that keyword)
  name / displayName contains         5
  description contains                2
  a description word contains         1
  a group contains                    3
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

logger = logging.getLogger("n8n_draft_agent.catalog")

_BUNDLED_CATALOG = Path(__file__).parent / "default_nodes.json"

DEFAULT_SEARCH_LIMIT = 15


@dataclass
class NodeSearchResult:
    node: dict[str, Any]
    score: int
    match_reason: str


def _score_node(node: dict[str, Any], keywords: list[str]) -> tuple[int, list[str]]:
    name = str(node.get("name", "")).lower()
    display_name = str(node.get("displayName", "")).lower()
    description = str(node.get("description") or "").lower()
    description_words = description.split()
    groups = [str(g).lower() for g in node.get("group") or []]

    score = 0
    reasons: list[str] = []
    for keyword in keywords:
        if keyword in (name, display_name):
            score += 10
            reasons.append(f'exact match: "{keyword}"')
            continue

        if keyword in name or keyword in display_name:
            score += 5
            reasons.append(f'name contains: "{keyword}"')

        if keyword in description:
            score += 2
            reasons.append(f'description contains: "{keyword}"')

        if any(keyword in word for word in description_words):
            score += 1

        if any(keyword in group for group in groups):
            score += 3
            reasons.append(f'category: "{keyword}"')

    return score, reasons


class NodeCatalog:
    """In-memory node catalog. Nodes are plain dicts, embedded verbatim in prompts."""

    def __init__(self, nodes: list[dict[str, Any]]) -> None:
        self._nodes = [n for n in nodes if isinstance(n, dict) and n.get("name")]
        self._by_name = {n["name"]: n for n in self._nodes}

    @classmethod
    def load(cls, path: str | Path | None = None) -> NodeCatalog:
        """Load from path, else CATALOG_PATH, else the bundled snapshot."""
        source = Path(path or os.getenv("CATALOG_PATH") or _BUNDLED_CATALOG)
        with source.open(encoding="utf-8") as fh:
            data = json.load(fh)
        if not isinstance(data, list):
            raise ValueError(f"Node catalog {source} must be a JSON array, got {type(data).__name__}")
        catalog = cls(data)
        logger.info("Loaded node catalog from %s (%d nodes)", source, len(catalog))
        return catalog

    def __len__(self) -> int:
        return len(self._nodes)

    @property
    def nodes(self) -> list[dict[str, Any]]:
        return list(self._nodes)

    def search(self, keywords: list[str], limit: int = DEFAULT_SEARCH_LIMIT) -> list[NodeSearchResult]:
        if not keywords:
            return []

        normalized = [kw.lower().strip() for kw in keywords]
        results: list[NodeSearchResult] = []
        for node in self._nodes:
            score, reasons = _score_node(node, normalized)
            if score > 0:
                results.append(NodeSearchResult(node, score, ", ".join(reasons) or "no strong match"))

        # sorted() is stable: equal scores keep catalog order
        results = sorted(results, key=lambda r: r.score, reverse=True)
        return results[:limit]

    def get_node_definition(self, node_type: str) -> dict[str, Any] | None:
        return self._by_name.get(node_type)

    def get_node_by_name(self, name: str) -> dict[str, Any] | None:
        """Case-insensitive exact match on name or displayName."""
        wanted = name.lower().strip()
        for node in self._nodes:
            if str(node.get("name", "")).lower() == wanted or str(node.get("displayName", "")).lower() == wanted:
                return node
        return None

    def get_nodes_by_credential_type(self, cred_type: str) -> list[dict[str, Any]]:
        return [
            n for n in self._nodes
            if any(c.get("name") == cred_type for c in n.get("credentials") or [] if isinstance(c, dict))
        ]

    def required_parameters(self, node_type: str) -> list[dict[str, Any]]:
        """Properties marked required that have no usable default."""
        definition = self.get_node_definition(node_type)
        if definition is None:
            return []
        required = []
        for prop in definition.get("properties") or []:
            if not isinstance(prop, dict) or not prop.get("required"):
                continue
            default = prop.get("default")
            if default is None or default == "":
                required.append(prop)
        return required
