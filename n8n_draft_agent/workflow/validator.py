"""Structural validation and auto-repair of generated workflows.

validate_workflow() never raises. It reports fatal problems in `errors`,
advisory ones in `warnings`, and when the only defect is missing or malformed
node positions it returns a repaired copy in `fixed_graph`.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field
from typing import Any

from n8n_draft_agent.workflow.graph import (
    is_trigger_node,
    is_valid_position,
    iter_connection_targets,
)

logger = logging.getLogger("n8n_draft_agent.workflow.validator")

# Sequential auto-fix layout (pixels)
_FIX_START_X: int = 250
_FIX_SPACING_X: int = 250
_FIX_Y: int = 300


@dataclass
class ValidationResult:
    """Outcome of validate_workflow().

    valid:       True iff errors is empty.
    errors:      fatal problems, in detection order.
    warnings:    advisory problems, in detection order.
    fixed_graph: repaired copy; present only when there were no errors and
                 at least one node had a missing or malformed position.
    """

    valid: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    fixed_graph: dict[str, Any] | None = None


class WorkflowValidationError(Exception):
    """Raised by validate_workflow_or_raise(). errors holds every fatal problem."""

    def __init__(self, errors: list[str]) -> None:
        super().__init__(f"Workflow validation failed: {', '.join(errors)}")
        self.errors = errors


def validate_workflow(graph: dict[str, Any]) -> ValidationResult:
    """Validate workflow structure and auto-fix positions when safe."""
    errors: list[str] = []
    warnings: list[str] = []
    needs_fix = False

    nodes = graph.get("nodes") if isinstance(graph, dict) else None
    if not isinstance(nodes, list):
        errors.append("Missing or invalid nodes array")
        return ValidationResult(valid=False, errors=errors, warnings=warnings)
    if not nodes:
        errors.append("Workflow must have at least one node")
        return ValidationResult(valid=False, errors=errors, warnings=warnings)

    connections = graph.get("connections")
    if not isinstance(connections, dict):
        errors.append("Missing or invalid connections object")
        return ValidationResult(valid=False, errors=errors, warnings=warnings)

    # Nodes
    node_names: set[str] = set()
    well_formed: list[dict[str, Any]] = []
    for node in nodes:
        name = node.get("name") if isinstance(node, dict) else None
        if not isinstance(name, str) or not name:
            errors.append("Node missing name")
            continue
        node_type = node.get("type")
        if not isinstance(node_type, str) or not node_type:
            errors.append(f'Node "{name}" missing type')
            continue

        if name in node_names:
            errors.append(f'Duplicate node name: "{name}"')
        node_names.add(name)
        well_formed.append(node)

        if not is_valid_position(node.get("position")):
            warnings.append(f'Node "{name}" has invalid position, will auto-fix')
            needs_fix = True

        if not isinstance(node.get("parameters"), dict):
            warnings.append(f'Node "{name}" missing parameters object')

    # Connections
    for source, outputs in connections.items():
        if source not in node_names:
            errors.append(f'Connection references non-existent source node: "{source}"')
            continue
        if not isinstance(outputs, dict):
            errors.append(f'Invalid connection structure for node "{source}"')
            continue
        for groups in outputs.values():
            if not isinstance(groups, list):
                errors.append(f'Invalid connection structure for node "{source}"')
                continue
            for group in groups:
                if not isinstance(group, list):
                    continue
                for conn in group:
                    target = conn.get("node") if isinstance(conn, dict) else None
                    if not isinstance(target, str) or not target:
                        errors.append(f'Invalid connection from "{source}"')
                        continue
                    if target not in node_names:
                        errors.append(
                            f'Connection references non-existent target node: '
                            f'"{target}" (from "{source}")'
                        )

    # Triggers
    if not any(is_trigger_node(n) for n in well_formed):
        warnings.append("Workflow has no trigger node - it can only be executed manually")

    # Orphans
    with_incoming: set[str] = set()
    for outputs in connections.values():
        with_incoming.update(iter_connection_targets(outputs))
    for node in well_formed:
        if not is_trigger_node(node) and node["name"] not in with_incoming:
            warnings.append(
                f'Node "{node["name"]}" has no incoming connections - it will never execute'
            )

    if errors:
        return ValidationResult(valid=False, errors=errors, warnings=warnings)

    fixed_graph = _auto_fix_positions(graph) if needs_fix else None
    return ValidationResult(valid=True, errors=[], warnings=warnings, fixed_graph=fixed_graph)


def _auto_fix_positions(graph: dict[str, Any]) -> dict[str, Any]:
    """Assign [250 + i*250, 300] to each unpositioned node, in node order.

    i counts only the nodes being fixed. Names and connections are untouched.
    """
    fixed = copy.deepcopy(graph)
    x = _FIX_START_X
    for node in fixed["nodes"]:
        if not is_valid_position(node.get("position")):
            node["position"] = [x, _FIX_Y]
            x += _FIX_SPACING_X
    return fixed


def validate_workflow_or_raise(graph: dict[str, Any]) -> dict[str, Any]:
    """Return the repaired graph (or the input when nothing needed fixing).

    Raises WorkflowValidationError when the graph has fatal problems.
    """
    result = validate_workflow(graph)
    if not result.valid:
        raise WorkflowValidationError(result.errors)
    return result.fixed_graph if result.fixed_graph is not None else graph
