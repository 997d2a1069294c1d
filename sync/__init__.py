"""Sync module for ingesting the remote ledger into the graph store.

This module handles:
- Finding the resume point from the persisted chain
- Fetching blocks strictly in increasing index order
- Persisting blocks, transactions and outputs
- Settling spend references through the resolver
- Pacing requests and backing off after fetch failures
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional

from database import Direction, GraphStore, Node, Relationship
from ledger import FetchFailed, LedgerSource, SourceUnavailable
from ledger.models import Block
from resolver import ResolutionOutcome, UTXOResolver

logger = logging.getLogger(__name__)

class SyncState(str, Enum):
    IDLE = "idle"
    RESUMING = "resuming"
    POLLING = "polling"
    FETCHING = "fetching"
    PERSISTING = "persisting"
    RESOLVING = "resolving"
    ADVANCING = "advancing"
    BACKOFF = "backoff"
    STOPPED = "stopped"

@dataclass
class SyncPolicy:
    """Timing of the sync loop.

    Attributes:
        pacing_delay: Seconds to wait after every loop iteration
        backoff_delay: Seconds to wait before retrying a failed fetch
        poll_interval: Seconds between catch-up passes in run_forever
        sleep: Coroutine function used for every wait
    """
    pacing_delay: float = 2.0
    backoff_delay: float = 30.0
    poll_interval: float = 60.0
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep

    @classmethod
    def from_settings(cls, settings: Dict[str, Any]) -> 'SyncPolicy':
        return cls(
            pacing_delay=settings.get('pacing_delay', cls.pacing_delay),
            backoff_delay=settings.get('backoff_delay', cls.backoff_delay),
            poll_interval=settings.get('poll_interval', cls.poll_interval)
        )

@dataclass
class SyncStats:
    """Counters for one catch-up pass."""
    blocks: int = 0
    transactions: int = 0
    outputs: int = 0
    settled: int = 0
    skipped: int = 0
    fetch_failures: int = 0
    aborted: bool = False
    skip_reasons: Dict[str, int] = field(default_factory=dict)

    def add(self, other: 'SyncStats') -> None:
        self.blocks += other.blocks
        self.transactions += other.transactions
        self.outputs += other.outputs
        self.settled += other.settled
        self.skipped += other.skipped
        self.fetch_failures += other.fetch_failures
        for reason, count in other.skip_reasons.items():
            self.skip_reasons[reason] = self.skip_reasons.get(reason, 0) + count

class ChainSync:
    """Sequential ingestion of the remote ledger into the graph.

    Blocks are processed one at a time in increasing index order; a block is
    fully persisted and its spend references resolved before the next one is
    fetched, which is what the resolver relies on.
    """

    def __init__(
        self,
        store: GraphStore,
        source: LedgerSource,
        resolver: Optional[UTXOResolver] = None,
        policy: Optional[SyncPolicy] = None
    ):
        """Initialize the sync engine.

        Args:
            store: Connected graph store
            source: Ledger to fetch blocks from
            resolver: Spend resolver, defaults to an index lookup resolver on store
            policy: Pacing and backoff timings
        """
        self.store = store
        self.source = source
        self.resolver = resolver or UTXOResolver(store)
        self.policy = policy or SyncPolicy()
        self.state = SyncState.IDLE
        self.stats = SyncStats()
        # Accumulated over every pass of this engine
        self.totals = SyncStats()
        self._stopping = False

    def _set_state(self, state: SyncState) -> None:
        if state != self.state:
            logger.debug(f"Sync state {self.state.value} -> {state.value}")
            self.state = state

    def stop(self) -> None:
        """Ask the engine to stop before its next fetch."""
        self._stopping = True

    async def _wait(self, delay: float) -> None:
        try:
            await self.policy.sleep(delay)
        except asyncio.CancelledError:
            logger.critical(f"Wait of {delay}s was interrupted, aborting sync")
            self._set_state(SyncState.STOPPED)
            raise

    async def get_latest_local_block_node(self) -> Node:
        """Return the newest persisted block, or the anchor if there is none.

        Follows ``succeeds`` relationships backwards from the anchor and
        returns the first node that no block succeeds.
        """
        anchor = await self.store.get_anchor()
        async for node in self.store.traverse(
            anchor,
            direction=Direction.INCOMING,
            rel_types=[Relationship.SUCCEEDS],
            depth_first=True
        ):
            if not await self.store.has_relationship(node, Relationship.SUCCEEDS, Direction.INCOMING):
                return node
        return anchor

    async def persist_block(self, block: Block, previous: Node) -> Node:
        """Write one block and everything it contains.

        All writes for the block share one store transaction, so a failure
        part way through leaves the previous block as the frontier.

        Args:
            block: Block fetched from the ledger
            previous: Node of the preceding block, or the anchor

        Returns:
            The new block node
        """
        pending = SyncStats()

        async with self.store.transaction():
            self._set_state(SyncState.PERSISTING)
            block_node = await self.store.create_node(block.node_properties())
            await self.store.create_edge(block_node, previous, Relationship.SUCCEEDS)
            pending.blocks += 1

            for tx in block.tx:
                self._set_state(SyncState.PERSISTING)
                tx_node = await self.store.create_node(tx.node_properties())
                await self.store.create_edge(
                    tx_node, block_node, Relationship.FROM, {'block_hash': block.hash}
                )
                pending.transactions += 1

                for n, output in enumerate(tx.out):
                    output_node = await self.store.create_node(output.node_properties(n))
                    await self.store.create_edge(
                        tx_node, output_node, Relationship.SENT, {'to_addr': output.addr, 'n': n}
                    )
                    pending.outputs += 1

                self._set_state(SyncState.RESOLVING)
                for prev_out in tx.spent_outputs():
                    resolution = await self.resolver.resolve(prev_out, tx_node)
                    if resolution.outcome == ResolutionOutcome.MATCHED:
                        pending.settled += 1
                    else:
                        pending.skipped += 1
                        reason = resolution.reason.value
                        pending.skip_reasons[reason] = pending.skip_reasons.get(reason, 0) + 1

        self.stats.add(pending)
        logger.info(
            f"Persisted block {block.block_index} ({block.hash}): "
            f"{pending.transactions} transactions, {pending.outputs} outputs, "
            f"{pending.settled} settled, {pending.skipped} unresolved"
        )
        return block_node

    async def run(self) -> SyncStats:
        """Catch up with the remote chain head once.

        Returns:
            Counters for this pass; ``aborted`` is set when the chain head
            could not be determined
        """
        self.stats = SyncStats()

        self._set_state(SyncState.RESUMING)
        previous = await self.get_latest_local_block_node()
        resume_index = previous.get('block_index', 0)

        self._set_state(SyncState.POLLING)
        try:
            head_index = self.source.get_latest_height()
        except SourceUnavailable as e:
            logger.critical(f"Could not determine the chain head, aborting: {e}")
            self.stats.aborted = True
            self.totals.aborted = True
            self._set_state(SyncState.STOPPED)
            return self.stats

        logger.info(f"Local chain at block {resume_index}, remote head at {head_index}")

        while resume_index < head_index:
            if self._stopping:
                logger.info(f"Stopping sync at block {resume_index}")
                break

            index = resume_index + 1
            self._set_state(SyncState.FETCHING)
            try:
                block = self.source.get_block(index)
            except FetchFailed as e:
                self.stats.fetch_failures += 1
                logger.warning(f"{e}. Retrying in {self.policy.backoff_delay} seconds...")
                self._set_state(SyncState.BACKOFF)
                await self._wait(self.policy.backoff_delay)
            else:
                previous = await self.persist_block(block, previous)
                self._set_state(SyncState.ADVANCING)
                resume_index = block.block_index

            await self._wait(self.policy.pacing_delay)

        self.totals.add(self.stats)
        self._set_state(SyncState.STOPPED if self._stopping else SyncState.IDLE)
        return self.stats

    async def run_forever(self) -> None:
        """Run catch-up passes until stopped or a pass aborts."""
        while not self._stopping:
            stats = await self.run()
            if stats.aborted or self._stopping:
                break
            logger.info(
                f"Caught up: {stats.blocks} blocks, {stats.settled} spends settled. "
                f"Next poll in {self.policy.poll_interval} seconds"
            )
            await self._wait(self.policy.poll_interval)

        self._set_state(SyncState.STOPPED)

# Export public interface
__all__ = ['ChainSync', 'SyncPolicy', 'SyncState', 'SyncStats']
