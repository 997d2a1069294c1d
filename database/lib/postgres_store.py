"""PostgreSQL graph store.

Nodes and edges live in the ``graph_nodes`` / ``graph_edges`` tables created by
schema v1, with property maps stored as JSONB. Property lookups go through the
GIN index on ``graph_nodes.properties``.
"""
import logging
from contextlib import asynccontextmanager
from contextvars import ContextVar
from typing import Any, Dict, Hashable, List, Optional

import asyncpg
from asyncpg.pool import Pool

from .graph_store import Direction, Edge, GraphStore, Node, Relationship, clean_properties, type_name
from ..exceptions import GraphStoreError, NodeNotFoundError

logger = logging.getLogger(__name__)


def _direction_clause(direction: Direction) -> str:
    if direction == Direction.OUTGOING:
        return 'e.start_id = $1'
    if direction == Direction.INCOMING:
        return 'e.end_id = $1'
    return '(e.start_id = $1 OR e.end_id = $1)'


class PostgresGraphStore(GraphStore):
    """Graph store on a PostgreSQL (or CockroachDB) connection pool.

    Usage:
        store = PostgresGraphStore(db_url)
        await store.connect()

        async with store.transaction():
            block = await store.create_node({'hash': ..., 'block_index': 1})
            await store.create_edge(block, await store.get_anchor(), Relationship.SUCCEEDS)
    """

    def __init__(self, db_url: Optional[str] = None, pool: Optional[Pool] = None) -> None:
        """Initialize the store.

        Args:
            db_url: Database URL, used when no pool is given
            pool: Optional existing pool with the graph schema applied
        """
        self._db_url = db_url
        self._pool = pool
        # Connection of the transaction open in the current task, if any
        self._tx_conn: ContextVar[Optional[asyncpg.Connection]] = ContextVar(
            f'pg_graph_tx_{id(self)}', default=None
        )

    @property
    def backend(self) -> str:
        return "postgres"

    async def connect(self) -> None:
        if self._pool is None:
            # Import here to avoid circular imports
            from database import init_db, get_pool
            await init_db(self._db_url)
            self._pool = await get_pool()

    async def disconnect(self) -> None:
        # The pool belongs to the database module
        self._pool = None

    @asynccontextmanager
    async def _connection(self):
        conn = self._tx_conn.get()
        if conn is not None:
            yield conn
            return
        if self._pool is None:
            raise GraphStoreError("Store is not connected")
        async with self._pool.acquire() as conn:
            yield conn

    @asynccontextmanager
    async def transaction(self):
        if self._tx_conn.get() is not None:
            # Nested blocks join the outer transaction
            yield
            return
        if self._pool is None:
            raise GraphStoreError("Store is not connected")

        async with self._pool.acquire() as conn:
            async with conn.transaction():
                token = self._tx_conn.set(conn)
                try:
                    yield
                finally:
                    self._tx_conn.reset(token)

    async def get_anchor(self) -> Node:
        async with self._connection() as conn:
            anchor_id = await conn.fetchval('SELECT id FROM graph_nodes WHERE anchor LIMIT 1')
            if anchor_id is None:
                await conn.execute(
                    '''
                    INSERT INTO graph_nodes (properties, anchor)
                    VALUES ('{}'::jsonb, true)
                    ON CONFLICT (anchor) WHERE anchor DO NOTHING
                    '''
                )
                anchor_id = await conn.fetchval('SELECT id FROM graph_nodes WHERE anchor LIMIT 1')
                logger.info(f"Created anchor node {anchor_id}")
        return Node(anchor_id, {})

    async def create_node(self, properties: Dict[str, Any]) -> Node:
        props = clean_properties(properties)
        async with self._connection() as conn:
            node_id = await conn.fetchval(
                'INSERT INTO graph_nodes (properties) VALUES ($1) RETURNING id',
                props
            )
        return Node(node_id, props)

    async def create_edge(
        self,
        start: Node,
        end: Node,
        rel_type: Relationship,
        properties: Optional[Dict[str, Any]] = None
    ) -> Edge:
        name = type_name(rel_type)
        props = clean_properties(properties)
        try:
            async with self._connection() as conn:
                edge_id = await conn.fetchval(
                    '''
                    INSERT INTO graph_edges (type, start_id, end_id, properties)
                    VALUES ($1, $2, $3, $4)
                    RETURNING id
                    ''',
                    name,
                    start.id,
                    end.id,
                    props
                )
        except asyncpg.exceptions.ForeignKeyViolationError as e:
            missing = start.id if (e.constraint_name or "").endswith("start_id") else end.id
            raise NodeNotFoundError(missing) from e
        return Edge(edge_id, name, start.id, end.id, props)

    async def get_node(self, node_id: Hashable) -> Optional[Node]:
        async with self._connection() as conn:
            row = await conn.fetchrow(
                'SELECT id, properties FROM graph_nodes WHERE id = $1',
                node_id
            )
        if not row:
            return None
        return Node(row['id'], row['properties'])

    async def relationships(
        self,
        node: Node,
        rel_type: Optional[Relationship] = None,
        direction: Direction = Direction.BOTH
    ) -> List[Edge]:
        args: List[Any] = [node.id]
        query = f'''
            SELECT e.id, e.type, e.start_id, e.end_id, e.properties
            FROM graph_edges e
            WHERE {_direction_clause(direction)}
        '''
        if rel_type is not None:
            args.append(type_name(rel_type))
            query += ' AND e.type = $2'
        query += ' ORDER BY e.id'

        async with self._connection() as conn:
            rows = await conn.fetch(query, *args)
        return [
            Edge(row['id'], row['type'], row['start_id'], row['end_id'], row['properties'])
            for row in rows
        ]

    async def neighbors(
        self,
        node: Node,
        rel_type: Optional[Relationship] = None,
        direction: Direction = Direction.BOTH
    ) -> List[Node]:
        args: List[Any] = [node.id]
        query = f'''
            SELECT n.id, n.properties
            FROM graph_edges e
            JOIN graph_nodes n
              ON n.id = CASE WHEN e.start_id = $1 THEN e.end_id ELSE e.start_id END
            WHERE {_direction_clause(direction)}
        '''
        if rel_type is not None:
            args.append(type_name(rel_type))
            query += ' AND e.type = $2'
        query += ' ORDER BY e.id'

        async with self._connection() as conn:
            rows = await conn.fetch(query, *args)
        return [Node(row['id'], row['properties']) for row in rows]

    async def find_nodes(self, key: str, value: Any) -> List[Node]:
        async with self._connection() as conn:
            rows = await conn.fetch(
                'SELECT id, properties FROM graph_nodes WHERE properties @> $1 ORDER BY id',
                {key: value}
            )
        return [Node(row['id'], row['properties']) for row in rows]

    async def count_nodes(self) -> int:
        async with self._connection() as conn:
            return await conn.fetchval('SELECT count(*) FROM graph_nodes')

    async def count_edges(self, rel_type: Optional[Relationship] = None) -> int:
        async with self._connection() as conn:
            if rel_type is None:
                return await conn.fetchval('SELECT count(*) FROM graph_edges')
            return await conn.fetchval(
                'SELECT count(*) FROM graph_edges WHERE type = $1',
                type_name(rel_type)
            )
