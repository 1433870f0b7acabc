"""
Diagnostic Graph - loads and validates the scripted troubleshooting graph

Responsibilities:
- Load node definitions from JSON
- Validate graph integrity once, at load time
- Look up nodes by id

Design principles:
- Fail fast: every integrity problem is collected and reported at once
- Immutable: nodes are frozen after load, the graph is never mutated
- Stateless lookups: safe to share across sessions and threads
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

from pathrag.contracts import (
    AllowedAction,
    DiagnosticNode,
    DiagnosticPhase,
    InputType,
)

logger = logging.getLogger(__name__)

DEFAULT_GRAPH_PATH = Path(__file__).resolve().parent.parent / "data" / "diagnostic_graph.json"

REQUIRED_NODE_FIELDS = ('node_id', 'phase', 'input_type', 'question', 'voice_instruction')


class GraphIntegrityError(ValueError):
    """Raised when the diagnostic graph definition is broken."""

    def __init__(self, errors: List[str]):
        self.errors = list(errors)
        message = "Diagnostic graph validation failed:\n" + "\n".join(f"  - {e}" for e in errors)
        super().__init__(message)


class DiagnosticGraph:
    """
    Immutable diagnostic graph.

    Nodes may form cycles (a node can route back to an earlier one), but
    every non-terminal node must have at least one answer and every answer
    must point at an existing node.
    """

    def __init__(self, definition: Dict[str, Any], source: str = "<dict>"):
        """
        Build graph from a parsed definition.

        Args:
            definition: Dict with entry_node_id, completion_node_id, nodes
            source: Where the definition came from (for log messages)

        Raises:
            GraphIntegrityError: If the definition fails validation
        """
        self.source = source
        self.version = definition.get('version')
        self.entry_node_id = definition.get('entry_node_id')
        self.completion_node_id = definition.get('completion_node_id')

        raw_nodes = definition.get('nodes') or []
        self._validate_definition(raw_nodes)

        self._nodes: Dict[str, DiagnosticNode] = {}
        for raw in raw_nodes:
            node = DiagnosticNode.from_dict(raw)
            self._nodes[node.node_id] = node

        unreachable = self._unreachable_node_ids()
        if unreachable:
            logger.warning(f"Nodes unreachable from '{self.entry_node_id}': {sorted(unreachable)}")

        logger.info(f"Diagnostic graph loaded from {source} with {len(self._nodes)} nodes")

    @classmethod
    def from_file(cls, graph_path=None) -> "DiagnosticGraph":
        """
        Load graph from a JSON file.

        Args:
            graph_path: Path to graph JSON (defaults to the bundled graph)

        Raises:
            FileNotFoundError: If the file doesn't exist
            GraphIntegrityError: If the graph fails validation
        """
        path = Path(graph_path) if graph_path else DEFAULT_GRAPH_PATH

        if not path.exists():
            raise FileNotFoundError(f"Diagnostic graph not found: {path}")

        with open(path, 'r', encoding='utf-8') as f:
            definition = json.load(f, object_pairs_hook=_reject_duplicate_keys)

        return cls(definition, source=str(path))

    # =========================================================================
    # Public API
    # =========================================================================

    def get_node(self, node_id: Optional[str]) -> Optional[DiagnosticNode]:
        """Node for node_id, or None if it doesn't exist."""
        if node_id is None:
            return None
        return self._nodes.get(node_id)

    def has_node(self, node_id: str) -> bool:
        return node_id in self._nodes

    @property
    def entry_node(self) -> DiagnosticNode:
        return self._nodes[self.entry_node_id]

    @property
    def completion_node(self) -> DiagnosticNode:
        return self._nodes[self.completion_node_id]

    def nodes_in_phase(self, phase: DiagnosticPhase) -> List[DiagnosticNode]:
        return [node for node in self._nodes.values() if node.phase == phase]

    def nodes_with_category(self, category: str) -> List[DiagnosticNode]:
        return [node for node in self._nodes.values() if node.category == category]

    def __iter__(self) -> Iterator[DiagnosticNode]:
        return iter(self._nodes.values())

    def __len__(self) -> int:
        return len(self._nodes)

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._nodes

    # =========================================================================
    # Validation
    # =========================================================================

    def _validate_definition(self, raw_nodes: List[Dict[str, Any]]):
        """
        Validate raw graph definition.

        Checks:
        - entry_node_id and completion_node_id are set and exist
        - Every node has the required fields
        - No duplicate node IDs
        - Phase, input_type and actions are known values
        - Non-terminal nodes have at least one expected answer
        - Every answer destination exists
        - max_retries is at least 1

        Raises:
            GraphIntegrityError: If validation fails
        """
        errors = []

        if not raw_nodes:
            errors.append("Graph has no nodes")

        node_ids = set()
        for i, raw in enumerate(raw_nodes):
            missing = [f for f in REQUIRED_NODE_FIELDS if not raw.get(f)]
            if missing:
                errors.append(f"Node at index {i} missing fields: {missing}")
                if 'node_id' in missing:
                    continue

            node_id = raw['node_id']
            if node_id in node_ids:
                errors.append(f"Duplicate node id '{node_id}'")
            node_ids.add(node_id)

        if not self.entry_node_id:
            errors.append("Missing 'entry_node_id'")
        elif self.entry_node_id not in node_ids:
            errors.append(f"Entry node '{self.entry_node_id}' not defined")

        if not self.completion_node_id:
            errors.append("Missing 'completion_node_id'")
        elif self.completion_node_id not in node_ids:
            errors.append(f"Completion node '{self.completion_node_id}' not defined")

        valid_phases = {phase.value for phase in DiagnosticPhase}
        valid_input_types = {input_type.value for input_type in InputType}
        valid_actions = {action.value for action in AllowedAction}

        for raw in raw_nodes:
            node_id = raw.get('node_id')
            if not node_id:
                continue

            if raw.get('phase') and raw['phase'] not in valid_phases:
                errors.append(f"Node '{node_id}' has unknown phase '{raw['phase']}'")

            if raw.get('input_type') and raw['input_type'] not in valid_input_types:
                errors.append(f"Node '{node_id}' has unknown input_type '{raw['input_type']}'")

            for action in raw.get('actions_allowed', []):
                if action not in valid_actions:
                    errors.append(f"Node '{node_id}' allows unknown action '{action}'")

            answers = raw.get('expected_answers') or {}
            if not raw.get('terminal', False) and not answers:
                errors.append(f"Non-terminal node '{node_id}' has no expected answers")

            for answer_key, destination in answers.items():
                if destination not in node_ids:
                    errors.append(
                        f"Node '{node_id}' answer '{answer_key}' points to undefined node '{destination}'"
                    )

            conditions = raw.get('escalation_conditions') or {}
            max_retries = conditions.get('max_retries')
            if max_retries is not None and (not isinstance(max_retries, int) or max_retries < 1):
                errors.append(f"Node '{node_id}' has invalid max_retries {max_retries!r}")

        if errors:
            raise GraphIntegrityError(errors)

        logger.debug(f"Graph validation passed for {len(node_ids)} nodes")

    def _unreachable_node_ids(self) -> set:
        seen = set()
        frontier = [self.entry_node_id]
        while frontier:
            node_id = frontier.pop()
            if node_id in seen:
                continue
            seen.add(node_id)
            node = self._nodes[node_id]
            frontier.extend(dest for _, dest in node.expected_answers)
        return set(self._nodes) - seen


def _reject_duplicate_keys(pairs):
    """json object hook: duplicate keys would silently drop answers."""
    result = {}
    duplicates = []
    for key, value in pairs:
        if key in result:
            duplicates.append(key)
        result[key] = value
    if duplicates:
        raise GraphIntegrityError([f"Duplicate keys in graph JSON: {duplicates}"])
    return result
