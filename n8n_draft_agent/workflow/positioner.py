"""Deterministic left-to-right canvas layout for workflows.

Nodes are layered by breadth-first search from the zero-in-degree nodes:

  x = 250 + level * 250
  y = stacked 100 px apart, centred on y = 300

A node takes the level of the predecessor that discovered it first; ties are
broken by queue order, never by a score.

Nodes that no zero-in-degree node can reach (a cycle with no entry point) end
up in LayoutPlan.unreached. By default each of them seeds another BFS at
level 0 so every node gets a position; with seed_unreached=False they are
left exactly as they were.
"""

from __future__ import annotations

import copy
import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Any

from n8n_draft_agent.workflow.graph import build_adjacency, is_valid_position

logger = logging.getLogger("n8n_draft_agent.workflow.positioner")

# Layout grid constants (pixels)
_START_X: int = 250
_START_Y: int = 300
_SPACING_X: int = 250
_SPACING_Y: int = 100


@dataclass
class LayoutPlan:
    """BFS layering of a workflow.

    levels:    node names per level, in discovery order.
    unreached: node names no zero-in-degree node could reach, in node order.
    """

    levels: list[list[str]] = field(default_factory=list)
    unreached: list[str] = field(default_factory=list)


def _bfs(
    seeds: list[str],
    adjacency: dict[str, list[str]],
    known: set[str],
    visited: set[str],
    levels: list[list[str]],
) -> None:
    queue: deque[tuple[str, int]] = deque((name, 0) for name in seeds)
    while queue:
        name, level = queue.popleft()
        if name in visited:
            continue
        visited.add(name)
        while len(levels) <= level:
            levels.append([])
        levels[level].append(name)
        for child in adjacency.get(name, []):
            if child in known and child not in visited:
                queue.append((child, level + 1))


def plan_layout(graph: dict[str, Any], seed_unreached: bool = True) -> LayoutPlan:
    """Compute the BFS levels for a workflow without touching positions."""
    names = [
        n["name"] for n in graph.get("nodes") or []
        if isinstance(n, dict) and isinstance(n.get("name"), str)
    ]
    known = set(names)
    adjacency = build_adjacency(graph)

    in_degree: dict[str, int] = {name: 0 for name in names}
    for targets in adjacency.values():
        for target in targets:
            if target in in_degree:
                in_degree[target] += 1

    roots = [name for name in names if in_degree[name] == 0]
    levels: list[list[str]] = []
    visited: set[str] = set()
    _bfs(roots, adjacency, known, visited, levels)

    unreached = [name for name in names if name not in visited]
    if unreached and seed_unreached:
        for name in unreached:
            if name not in visited:
                _bfs([name], adjacency, known, visited, levels)

    return LayoutPlan(levels=levels, unreached=unreached)


def position_nodes(graph: dict[str, Any], seed_unreached: bool = True) -> dict[str, Any]:
    """Return a copy of graph with BFS-layered node positions.

    The input is never mutated. When every node already has a valid position
    the copy is returned unchanged.
    """
    positioned = copy.deepcopy(graph)
    nodes = positioned.get("nodes") or []
    if all(isinstance(n, dict) and is_valid_position(n.get("position")) for n in nodes):
        return positioned

    plan = plan_layout(positioned, seed_unreached=seed_unreached)
    if plan.unreached:
        logger.warning(
            "Nodes unreachable from any entry node: %s (%s)",
            ", ".join(plan.unreached),
            "seeded as extra roots" if seed_unreached else "left unpositioned",
        )

    coordinates: dict[str, list[int]] = {}
    for level_index, level_nodes in enumerate(plan.levels):
        x = _START_X + level_index * _SPACING_X
        start_y = _START_Y - (len(level_nodes) * _SPACING_Y) // 2
        for i, name in enumerate(level_nodes):
            coordinates[name] = [x, start_y + i * _SPACING_Y]

    for node in nodes:
        if isinstance(node, dict) and node.get("name") in coordinates:
            node["position"] = coordinates[node["name"]]

    return positioned
