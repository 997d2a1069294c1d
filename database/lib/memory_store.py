"""In-process graph store.

Keeps the whole graph in dictionaries. Nothing survives the process, which
makes it suitable for dry runs against the live ledger API and for tests.
"""
import itertools
import logging
from collections import defaultdict
from contextlib import asynccontextmanager
from typing import Any, Dict, Hashable, List, Optional, Set, Tuple

from .graph_store import Direction, Edge, GraphStore, Node, Relationship, clean_properties, type_name
from ..exceptions import NodeNotFoundError

logger = logging.getLogger(__name__)


class MemoryGraphStore(GraphStore):
    """Dictionary backed graph store with journaled rollback."""

    def __init__(self) -> None:
        self._ids = itertools.count(1)
        self._nodes: Dict[int, Dict[str, Any]] = {}
        self._edges: Dict[int, Edge] = {}
        self._out: Dict[int, List[int]] = defaultdict(list)
        self._in: Dict[int, List[int]] = defaultdict(list)
        self._index: Dict[Tuple[str, Any], List[int]] = defaultdict(list)
        self._anchor_id: Optional[int] = None
        self._journal: Optional[List[Tuple[str, int]]] = None
        self._connected = False

    @property
    def backend(self) -> str:
        return "memory"

    async def connect(self) -> None:
        self._connected = True

    async def disconnect(self) -> None:
        self._connected = False

    async def get_anchor(self) -> Node:
        if self._anchor_id is None:
            # The anchor outlives any block transaction
            self._anchor_id = next(self._ids)
            self._nodes[self._anchor_id] = {}
            logger.info("Created anchor node")
        return Node(self._anchor_id, {})

    async def create_node(self, properties: Dict[str, Any]) -> Node:
        node_id = next(self._ids)
        props = clean_properties(properties)
        self._nodes[node_id] = props
        for key, value in props.items():
            try:
                self._index[(key, value)].append(node_id)
            except TypeError:
                continue  # Unhashable values are not indexed
        self._record('node', node_id)
        return Node(node_id, dict(props))

    async def create_edge(
        self,
        start: Node,
        end: Node,
        rel_type: Relationship,
        properties: Optional[Dict[str, Any]] = None
    ) -> Edge:
        for node in (start, end):
            if node.id not in self._nodes:
                raise NodeNotFoundError(node.id)
        edge = Edge(next(self._ids), type_name(rel_type), start.id, end.id, clean_properties(properties))
        self._edges[edge.id] = edge
        self._out[start.id].append(edge.id)
        self._in[end.id].append(edge.id)
        self._record('edge', edge.id)
        return edge

    def _record(self, kind: str, item_id: int) -> None:
        if self._journal is not None:
            self._journal.append((kind, item_id))

    def _discard(self, kind: str, item_id: int) -> None:
        if kind == 'edge':
            edge = self._edges.pop(item_id)
            self._out[edge.start_id].remove(item_id)
            self._in[edge.end_id].remove(item_id)
            return
        props = self._nodes.pop(item_id)
        for key, value in props.items():
            try:
                self._index[(key, value)].remove(item_id)
            except (TypeError, ValueError):
                continue

    @asynccontextmanager
    async def transaction(self):
        if self._journal is not None:
            # Nested blocks join the outer transaction
            yield
            return

        self._journal = []
        try:
            yield
        except BaseException:
            for kind, item_id in reversed(self._journal):
                self._discard(kind, item_id)
            logger.debug(f"Rolled back {len(self._journal)} writes")
            raise
        finally:
            self._journal = None

    async def get_node(self, node_id: Hashable) -> Optional[Node]:
        props = self._nodes.get(node_id)
        if props is None:
            return None
        return Node(node_id, dict(props))

    async def relationships(
        self,
        node: Node,
        rel_type: Optional[Relationship] = None,
        direction: Direction = Direction.BOTH
    ) -> List[Edge]:
        edge_ids: Set[int] = set()
        if direction in (Direction.OUTGOING, Direction.BOTH):
            edge_ids.update(self._out.get(node.id, []))
        if direction in (Direction.INCOMING, Direction.BOTH):
            # Self loops sit in both lists
            edge_ids.update(self._in.get(node.id, []))

        name = type_name(rel_type)
        return [
            self._edges[edge_id] for edge_id in sorted(edge_ids)
            if name is None or self._edges[edge_id].type == name
        ]

    async def find_nodes(self, key: str, value: Any) -> List[Node]:
        try:
            node_ids = list(self._index.get((key, value), []))
        except TypeError:
            return []
        return [Node(node_id, dict(self._nodes[node_id])) for node_id in node_ids]

    async def count_nodes(self) -> int:
        return len(self._nodes)

    async def count_edges(self, rel_type: Optional[Relationship] = None) -> int:
        name = type_name(rel_type)
        if name is None:
            return len(self._edges)
        return sum(1 for edge in self._edges.values() if edge.type == name)
