"""Graph store interface.

Defines the property-graph primitives the sync engine and the spend resolver
work against:
- Node and edge creation
- Relationship lookup by type and direction
- Lazy traversal from a start node
- Exact property lookup
- Per-block transaction boundaries

Implementations:
- MemoryGraphStore: in-process, used for dry runs and tests
- PostgresGraphStore: asyncpg, property maps in JSONB
- Neo4jGraphStore: Neo4j async driver
"""
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncContextManager, AsyncIterator, Dict, Hashable, List, Optional, Sequence


class Relationship(str, Enum):
    """Relationship types of the ledger graph."""
    SUCCEEDS = "succeeds"  # Block -> previous block (or anchor)
    FROM = "from"  # Transaction -> owning block
    SENT = "sent"  # Transaction -> output
    RECEIVED = "received"  # Output -> spending transaction


class Direction(str, Enum):
    OUTGOING = "outgoing"
    INCOMING = "incoming"
    BOTH = "both"


@dataclass(frozen=True)
class Node:
    """Handle to a persisted node."""
    id: Hashable
    properties: Dict[str, Any] = field(default_factory=dict, compare=False, hash=False)

    def get(self, key: str, default: Any = None) -> Any:
        return self.properties.get(key, default)

    def has_property(self, key: str) -> bool:
        return self.properties.get(key) is not None


@dataclass(frozen=True)
class Edge:
    """Handle to a persisted, directed relationship."""
    id: Hashable
    type: str
    start_id: Hashable
    end_id: Hashable
    properties: Dict[str, Any] = field(default_factory=dict, compare=False, hash=False)

    def other(self, node_id: Hashable) -> Hashable:
        """Return the id at the opposite end from node_id."""
        return self.end_id if self.start_id == node_id else self.start_id


def clean_properties(properties: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Drop None values; absent and null properties are the same thing."""
    return {k: v for k, v in (properties or {}).items() if v is not None}


def type_name(rel_type) -> Optional[str]:
    if rel_type is None:
        return None
    return rel_type.value if isinstance(rel_type, Relationship) else str(rel_type)


class GraphStore(ABC):
    """Abstract property graph store.

    Writes are visible to subsequent reads in the same process as soon as the
    call returns. Inside ``transaction()`` they are visible to reads made in
    the same transaction and are discarded if the block raises.
    """

    @property
    @abstractmethod
    def backend(self) -> str:
        """Return the backend name."""

    # ===== Connection Management =====

    @abstractmethod
    async def connect(self) -> None:
        """Establish connection to the backend."""

    @abstractmethod
    async def disconnect(self) -> None:
        """Release backend resources."""

    async def health_check(self) -> Dict[str, Any]:
        try:
            await self.count_nodes()
            return {'status': 'healthy', 'backend': self.backend}
        except Exception as e:
            return {'status': 'unhealthy', 'backend': self.backend, 'error': str(e)}

    # ===== Writes =====

    @abstractmethod
    async def get_anchor(self) -> Node:
        """Return the synthetic root node, creating it if absent."""

    @abstractmethod
    async def create_node(self, properties: Dict[str, Any]) -> Node:
        """Create a node from a property map.

        Args:
            properties: Node properties; None values are not stored

        Returns:
            Handle to the created node
        """

    @abstractmethod
    async def create_edge(
        self,
        start: Node,
        end: Node,
        rel_type: Relationship,
        properties: Optional[Dict[str, Any]] = None
    ) -> Edge:
        """Create a directed relationship from start to end.

        Raises:
            NodeNotFoundError: If either node does not exist
        """

    @abstractmethod
    def transaction(self) -> AsyncContextManager[None]:
        """Group writes into one unit that commits or rolls back together."""

    # ===== Reads =====

    @abstractmethod
    async def get_node(self, node_id: Hashable) -> Optional[Node]:
        """Get a node by id."""

    @abstractmethod
    async def relationships(
        self,
        node: Node,
        rel_type: Optional[Relationship] = None,
        direction: Direction = Direction.BOTH
    ) -> List[Edge]:
        """List relationships attached to a node, in creation order.

        Args:
            node: Node whose relationships to list
            rel_type: Only relationships of this type, all types if None
            direction: OUTGOING for edges starting at node, INCOMING for
                edges ending at it, BOTH for either
        """

    @abstractmethod
    async def find_nodes(self, key: str, value: Any) -> List[Node]:
        """Find nodes whose property key equals value, in creation order."""

    @abstractmethod
    async def count_nodes(self) -> int:
        """Count nodes, anchor included."""

    @abstractmethod
    async def count_edges(self, rel_type: Optional[Relationship] = None) -> int:
        """Count relationships, optionally of one type."""

    async def has_relationship(
        self,
        node: Node,
        rel_type: Optional[Relationship] = None,
        direction: Direction = Direction.BOTH
    ) -> bool:
        return bool(await self.relationships(node, rel_type, direction))

    async def neighbors(
        self,
        node: Node,
        rel_type: Optional[Relationship] = None,
        direction: Direction = Direction.BOTH
    ) -> List[Node]:
        """Nodes at the other end of the node's relationships."""
        result = []
        for edge in await self.relationships(node, rel_type, direction):
            neighbor = await self.get_node(edge.other(node.id))
            if neighbor is not None:
                result.append(neighbor)
        return result

    async def traverse(
        self,
        start: Node,
        direction: Direction = Direction.BOTH,
        rel_types: Optional[Sequence[Relationship]] = None,
        depth_first: bool = False
    ) -> AsyncIterator[Node]:
        """Lazily visit every node reachable from start.

        The start node is yielded first and every node is yielded once.
        Neighbours are expanded only as the caller consumes the iterator, so
        stopping early stops querying.

        Args:
            start: Node to begin at
            direction: Direction in which relationships are followed
            rel_types: Only follow these relationship types, all if None
            depth_first: Visit depth-first instead of breadth-first
        """
        allowed = {type_name(t) for t in rel_types} if rel_types else None
        # Let the backend filter when there is a single type to follow
        only_type = rel_types[0] if rel_types and len(rel_types) == 1 else None
        visited = {start.id}
        pending = deque([start])

        while pending:
            node = pending.pop() if depth_first else pending.popleft()
            yield node

            edges = await self.relationships(node, only_type, direction)
            if depth_first:
                edges = list(reversed(edges))
            for edge in edges:
                if allowed is not None and edge.type not in allowed:
                    continue
                neighbor_id = edge.other(node.id)
                if neighbor_id in visited:
                    continue
                neighbor = await self.get_node(neighbor_id)
                if neighbor is None:
                    continue
                visited.add(neighbor_id)
                pending.append(neighbor)
