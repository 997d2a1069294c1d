"""Tests for the in-memory graph store."""

import pytest

from database import Direction, NodeNotFoundError, Node, Relationship

pytestmark = pytest.mark.asyncio

async def test_anchor_is_created_once(store):
    first = await store.get_anchor()
    second = await store.get_anchor()

    assert first.id == second.id
    assert first.properties == {}
    assert await store.count_nodes() == 1

async def test_create_node_drops_null_properties(store):
    node = await store.create_node({'addr': None, 'value': 10, 'n': 0})

    assert node.properties == {'value': 10, 'n': 0}
    assert not node.has_property('addr')
    fetched = await store.get_node(node.id)
    assert fetched.properties == {'value': 10, 'n': 0}

async def test_create_edge_requires_existing_nodes(store):
    node = await store.create_node({'hash': 'a'})

    with pytest.raises(NodeNotFoundError) as exc:
        await store.create_edge(node, Node(9999), Relationship.SENT)
    assert exc.value.node_id == 9999
    assert await store.count_edges() == 0

async def test_relationships_filter_by_type_and_direction(store):
    tx = await store.create_node({'tx_index': 1})
    block = await store.create_node({'block_index': 1})
    out = await store.create_node({'n': 0})
    await store.create_edge(tx, block, Relationship.FROM, {'block_hash': 'h'})
    await store.create_edge(tx, out, Relationship.SENT, {'to_addr': 'x', 'n': 0})

    outgoing = await store.relationships(tx, direction=Direction.OUTGOING)
    assert [edge.type for edge in outgoing] == ['from', 'sent']

    sent = await store.relationships(tx, Relationship.SENT, Direction.OUTGOING)
    assert len(sent) == 1
    assert sent[0].end_id == out.id
    assert sent[0].properties == {'to_addr': 'x', 'n': 0}

    assert await store.relationships(tx, direction=Direction.INCOMING) == []
    assert await store.has_relationship(block, Relationship.FROM, Direction.INCOMING)
    assert not await store.has_relationship(block, Relationship.FROM, Direction.OUTGOING)

    neighbors = await store.neighbors(tx, Relationship.SENT, Direction.OUTGOING)
    assert [node.id for node in neighbors] == [out.id]

async def test_traverse_is_breadth_first_and_visits_once(store):
    anchor = await store.get_anchor()
    a = await store.create_node({'name': 'a'})
    b = await store.create_node({'name': 'b'})
    c = await store.create_node({'name': 'c'})
    await store.create_edge(a, anchor, Relationship.SUCCEEDS)
    await store.create_edge(b, anchor, Relationship.SUCCEEDS)
    await store.create_edge(c, a, Relationship.SUCCEEDS)
    await store.create_edge(c, b, Relationship.SUCCEEDS)

    visited = [node.id async for node in store.traverse(anchor)]

    assert visited == [anchor.id, a.id, b.id, c.id]

async def test_traverse_depth_first_follows_direction_and_types(store):
    anchor = await store.get_anchor()
    first = await store.create_node({'block_index': 1})
    second = await store.create_node({'block_index': 2})
    tx = await store.create_node({'tx_index': 7})
    await store.create_edge(first, anchor, Relationship.SUCCEEDS)
    await store.create_edge(second, first, Relationship.SUCCEEDS)
    await store.create_edge(tx, first, Relationship.FROM)

    visited = [
        node.id async for node in store.traverse(
            anchor, Direction.INCOMING, [Relationship.SUCCEEDS], depth_first=True
        )
    ]

    assert visited == [anchor.id, first.id, second.id]

async def test_traverse_is_lazy(store, monkeypatch):
    anchor = await store.get_anchor()
    for i in range(3):
        node = await store.create_node({'i': i})
        await store.create_edge(node, anchor, Relationship.SUCCEEDS)

    calls = []
    original = store.relationships

    async def counting(node, rel_type=None, direction=Direction.BOTH):
        calls.append(node.id)
        return await original(node, rel_type, direction)

    monkeypatch.setattr(store, 'relationships', counting)

    traversal = store.traverse(anchor)
    first = await traversal.__anext__()
    await traversal.aclose()

    assert first.id == anchor.id
    assert calls == []

async def test_find_nodes_is_exact(store):
    await store.create_node({'tx_index': 5, 'hash': 'a'})
    await store.create_node({'tx_index': 55, 'hash': 'b'})
    await store.create_node({'tx_index': 5, 'hash': 'c'})

    found = await store.find_nodes('tx_index', 5)

    assert [node.get('hash') for node in found] == ['a', 'c']
    assert await store.find_nodes('tx_index', 6) == []

async def test_transaction_rolls_back_on_error(store):
    anchor = await store.get_anchor()
    kept = await store.create_node({'tx_index': 1})

    with pytest.raises(RuntimeError):
        async with store.transaction():
            node = await store.create_node({'tx_index': 2})
            await store.create_edge(node, anchor, Relationship.SUCCEEDS)
            # Visible inside the transaction
            assert await store.find_nodes('tx_index', 2) == [node]
            raise RuntimeError("boom")

    assert await store.count_nodes() == 2
    assert await store.count_edges() == 0
    assert await store.find_nodes('tx_index', 2) == []
    assert await store.get_node(kept.id) is not None
    assert not await store.has_relationship(anchor)

async def test_transaction_commits(store):
    anchor = await store.get_anchor()

    async with store.transaction():
        node = await store.create_node({'block_index': 1})
        await store.create_edge(node, anchor, Relationship.SUCCEEDS)

    assert await store.count_edges(Relationship.SUCCEEDS) == 1
    assert await store.get_node(node.id) == node

async def test_health_check(store):
    assert await store.health_check() == {'status': 'healthy', 'backend': 'memory'}

async def test_relationships_in_both_directions_are_listed_once(store):
    block = await store.create_node({'block_index': 1})
    previous = await store.create_node({'block_index': 0})
    await store.create_edge(block, previous, Relationship.SUCCEEDS)
    txs = [await store.create_node({'tx_index': i}) for i in range(50)]
    for tx in txs:
        await store.create_edge(tx, block, Relationship.FROM)
    loop = await store.create_edge(block, block, Relationship.SUCCEEDS)

    edges = await store.relationships(block)

    assert len(edges) == 52
    assert [edge.id for edge in edges] == sorted(edge.id for edge in edges)
    assert [edge.id for edge in edges].count(loop.id) == 1
