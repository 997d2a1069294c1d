"""Neo4j graph store.

Ledger nodes carry the ``LedgerNode`` label (the root additionally ``Anchor``)
and relationships use the lowercase relationship type names. Node and edge
ids are Neo4j element ids.
"""
import logging
import re
from contextlib import asynccontextmanager
from contextvars import ContextVar
from typing import Any, Dict, Hashable, List, Optional

import backoff
from neo4j import AsyncDriver, AsyncGraphDatabase, AsyncTransaction
from neo4j.exceptions import ServiceUnavailable, SessionExpired

from .graph_store import Direction, Edge, GraphStore, Node, Relationship, clean_properties, type_name
from ..exceptions import GraphStoreError, NodeNotFoundError

logger = logging.getLogger(__name__)

_PROPERTY_KEY = re.compile(r'^\w+$')

_PATTERNS = {
    Direction.OUTGOING: '(n)-[r{type}]->(m)',
    Direction.INCOMING: '(n)<-[r{type}]-(m)',
    Direction.BOTH: '(n)-[r{type}]-(m)',
}


def _edge(rel) -> Edge:
    return Edge(
        rel.element_id,
        rel.type,
        rel.start_node.element_id,
        rel.end_node.element_id,
        dict(rel)
    )


def _node(record_node) -> Node:
    return Node(record_node.element_id, dict(record_node))


def _type_filter(rel_type: Optional[Relationship]) -> str:
    name = type_name(rel_type)
    if name is None:
        return ''
    # Types cannot be parameterized; only known names reach the query
    if name not in {r.value for r in Relationship}:
        raise GraphStoreError(f"Unknown relationship type: {name}")
    return f':`{name}`'


class Neo4jGraphStore(GraphStore):
    """Graph store on the Neo4j async driver.

    Usage:
        store = Neo4jGraphStore(uri, user, password)
        await store.connect()
        anchor = await store.get_anchor()
    """

    def __init__(
        self,
        uri: str = "bolt://localhost:7687",
        user: str = "neo4j",
        password: str = "",
        database: str = "neo4j"
    ) -> None:
        self._uri = uri
        self._user = user
        self._password = password
        self._database = database
        self._driver: Optional[AsyncDriver] = None
        self._tx: ContextVar[Optional[AsyncTransaction]] = ContextVar(
            f'neo4j_graph_tx_{id(self)}', default=None
        )

    @property
    def backend(self) -> str:
        return "neo4j"

    @backoff.on_exception(
        backoff.expo,
        (ServiceUnavailable, SessionExpired),
        max_tries=5
    )
    async def connect(self) -> None:
        if self._driver is None:
            self._driver = AsyncGraphDatabase.driver(
                self._uri,
                auth=(self._user, self._password)
            )
        try:
            await self._driver.verify_connectivity()
        except Exception as e:
            logger.error(f"Failed to connect to Neo4j at {self._uri}: {e}")
            raise

        await self._run(
            'CREATE INDEX ledger_node_tx_index IF NOT EXISTS '
            'FOR (n:LedgerNode) ON (n.tx_index)'
        )
        logger.info(f"Connected to Neo4j at {self._uri}")

    async def disconnect(self) -> None:
        if self._driver is not None:
            await self._driver.close()
            self._driver = None

    async def _run(self, query: str, **params) -> List[Any]:
        tx = self._tx.get()
        if tx is not None:
            result = await tx.run(query, params)
            return [record async for record in result]
        if self._driver is None:
            raise GraphStoreError("Store is not connected")
        records, _, _ = await self._driver.execute_query(
            query, params, database_=self._database
        )
        return records

    @asynccontextmanager
    async def transaction(self):
        if self._tx.get() is not None:
            # Nested blocks join the outer transaction
            yield
            return
        if self._driver is None:
            raise GraphStoreError("Store is not connected")

        async with self._driver.session(database=self._database) as session:
            tx = await session.begin_transaction()
            token = self._tx.set(tx)
            try:
                yield
            except BaseException:
                await tx.rollback()
                raise
            else:
                await tx.commit()
            finally:
                self._tx.reset(token)

    async def get_anchor(self) -> Node:
        records = await self._run('MERGE (a:LedgerNode:Anchor) RETURN a')
        return Node(records[0]['a'].element_id, {})

    async def create_node(self, properties: Dict[str, Any]) -> Node:
        records = await self._run(
            'CREATE (n:LedgerNode) SET n = $props RETURN n',
            props=clean_properties(properties)
        )
        return _node(records[0]['n'])

    async def create_edge(
        self,
        start: Node,
        end: Node,
        rel_type: Relationship,
        properties: Optional[Dict[str, Any]] = None
    ) -> Edge:
        records = await self._run(
            f'''
            MATCH (a) WHERE elementId(a) = $start
            MATCH (b) WHERE elementId(b) = $end
            CREATE (a)-[r{_type_filter(rel_type)}]->(b)
            SET r = $props
            RETURN r
            ''',
            start=start.id,
            end=end.id,
            props=clean_properties(properties)
        )
        if not records:
            missing = start.id if await self.get_node(start.id) is None else end.id
            raise NodeNotFoundError(missing)
        return _edge(records[0]['r'])

    async def get_node(self, node_id: Hashable) -> Optional[Node]:
        records = await self._run(
            'MATCH (n) WHERE elementId(n) = $id RETURN n',
            id=node_id
        )
        if not records:
            return None
        return _node(records[0]['n'])

    async def relationships(
        self,
        node: Node,
        rel_type: Optional[Relationship] = None,
        direction: Direction = Direction.BOTH
    ) -> List[Edge]:
        pattern = _PATTERNS[direction].format(type=_type_filter(rel_type))
        # id() is the only creation-ordered key the server exposes
        records = await self._run(
            f'MATCH {pattern} WHERE elementId(n) = $id RETURN DISTINCT r, id(r) AS seq ORDER BY seq',
            id=node.id
        )
        return [_edge(record['r']) for record in records]

    async def neighbors(
        self,
        node: Node,
        rel_type: Optional[Relationship] = None,
        direction: Direction = Direction.BOTH
    ) -> List[Node]:
        pattern = _PATTERNS[direction].format(type=_type_filter(rel_type))
        records = await self._run(
            f'MATCH {pattern} WHERE elementId(n) = $id RETURN m ORDER BY id(r)',
            id=node.id
        )
        return [_node(record['m']) for record in records]

    async def find_nodes(self, key: str, value: Any) -> List[Node]:
        if not _PROPERTY_KEY.match(key):
            raise GraphStoreError(f"Invalid property key: {key!r}")
        records = await self._run(
            f'MATCH (n:LedgerNode) WHERE n.`{key}` = $value RETURN n ORDER BY id(n)',
            value=value
        )
        return [_node(record['n']) for record in records]

    async def count_nodes(self) -> int:
        records = await self._run('MATCH (n:LedgerNode) RETURN count(n) AS total')
        return records[0]['total']

    async def count_edges(self, rel_type: Optional[Relationship] = None) -> int:
        records = await self._run(
            f'MATCH (:LedgerNode)-[r{_type_filter(rel_type)}]->(:LedgerNode) RETURN count(r) AS total'
        )
        return records[0]['total']
