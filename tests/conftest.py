"""Shared fixtures for the ledger graph tests."""

from typing import Dict, List, Optional
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio

from database import MemoryGraphStore
from ledger import FetchFailed, LedgerSource, SourceUnavailable
from ledger.models import Block
from sync import SyncPolicy

def make_tx(tx_index: int, outputs=(), spends=(), tx_hash: Optional[str] = None) -> Dict:
    """Build a raw transaction payload.

    Args:
        tx_index: Ledger-wide transaction index
        outputs: (addr, value) pairs
        spends: (tx_index, n, addr) spend references
    """
    inputs = [
        {'prev_out': {'tx_index': ref_index, 'n': n, 'addr': addr, 'value': 1000, 'type': 0}}
        for ref_index, n, addr in spends
    ]
    if not inputs:
        # Coinbase input
        inputs = [{'script': '04ffff001d0104', 'sequence': 4294967295}]
    return {
        'hash': tx_hash or f'tx{tx_index:060d}',
        'ver': 1,
        'vin_sz': len(inputs),
        'vout_sz': len(outputs),
        'size': 200,
        'relayed_by': '0.0.0.0',
        'tx_index': tx_index,
        'inputs': inputs,
        'out': [
            {'type': 0, 'addr': addr, 'value': value, 'n': n, 'tx_index': tx_index}
            for n, (addr, value) in enumerate(outputs)
        ]
    }

def make_block(block_index: int, txs: List[Dict], prev_block: Optional[str] = None) -> Dict:
    """Build a raw block payload."""
    return {
        'hash': f'block{block_index:059d}',
        'ver': 1,
        'prev_block': prev_block or f'block{block_index - 1:059d}',
        'mrkl_root': 'ab' * 32,
        'time': 1231006505 + block_index * 600,
        'bits': 486604799,
        'nonce': 2083236893,
        'n_tx': len(txs),
        'size': 285,
        'block_index': block_index,
        'main_chain': True,
        'height': block_index - 1,
        'received_time': 1231006505 + block_index * 600,
        'relayed_by': '0.0.0.0',
        'tx': txs
    }

class FakeLedger(LedgerSource):
    """In-memory ledger with scripted fetch failures."""

    def __init__(self, blocks: List[Dict], failures: Optional[Dict[int, int]] = None,
                 head: Optional[int] = None, unavailable: bool = False):
        self.blocks = {raw['block_index']: Block.model_validate(raw) for raw in blocks}
        self.failures = dict(failures or {})
        self.head = head
        self.unavailable = unavailable
        self.requests: List[int] = []

    def get_latest_height(self) -> int:
        if self.unavailable:
            raise SourceUnavailable("ledger unreachable")
        if self.head is not None:
            return self.head
        return max(self.blocks, default=0)

    def get_block(self, index: int) -> Block:
        self.requests.append(index)
        if self.failures.get(index, 0) > 0:
            self.failures[index] -= 1
            raise FetchFailed(index, "HTTP 503")
        if index not in self.blocks:
            raise FetchFailed(index, "not found")
        return self.blocks[index]

@pytest_asyncio.fixture
async def store():
    """Create and return a connected in-memory graph store."""
    graph = MemoryGraphStore()
    await graph.connect()
    yield graph
    await graph.disconnect()

@pytest.fixture
def fake_sleep():
    """Mock clock that records every wait."""
    return AsyncMock(return_value=None)

@pytest.fixture
def policy(fake_sleep):
    return SyncPolicy(pacing_delay=2.0, backoff_delay=30.0, poll_interval=60.0, sleep=fake_sleep)

@pytest.fixture
def two_block_chain():
    """Block 1 pays 1A2b3c4d, block 2 spends that output and pays nothing."""
    return [
        make_block(1, [make_tx(100, outputs=[('1A2b3c4d', 5000000000)])]),
        make_block(2, [make_tx(200, spends=[(100, 0, '1A2b3c4d')])]),
    ]
