"""Resolver module for settling spend references against the ledger graph.

Every transaction input that carries a ``prev_out`` points at an output created
by an earlier transaction. The resolver finds the money node for that output
and links it to the spending transaction with a ``received`` relationship.
"""
import logging
from collections import Counter
from contextlib import aclosing
from dataclasses import dataclass
from enum import Enum
from typing import AsyncIterator, Optional

from config.lib.load_settings_conf import RESOLVE_STRATEGIES
from database import Direction, GraphStore, Node, Relationship
from ledger.models import PrevOut

logger = logging.getLogger(__name__)

class ResolutionOutcome(str, Enum):
    MATCHED = "matched"
    SKIPPED = "skipped"

class SkipReason(str, Enum):
    """Why a spend reference was left unsettled."""
    MISSING_TRANSACTION = "missing_transaction"
    MISSING_OUTPUT = "missing_output"
    ALREADY_SPENT = "already_spent"
    NO_ADDRESS = "no_address"

@dataclass(frozen=True)
class Resolution:
    outcome: ResolutionOutcome
    reason: Optional[SkipReason] = None
    output: Optional[Node] = None

    @property
    def matched(self) -> bool:
        return self.outcome == ResolutionOutcome.MATCHED

class UTXOResolver:
    """Links spend references to the outputs they consume.

    The graph must already hold every block that precedes the spending
    transaction's block; the resolver only looks at committed history.

    Matching follows the ledger's own rules: the referenced transaction is
    found by ``tx_index`` and, among its ``sent`` outputs, the first one whose
    ``n`` equals the reference's ``n`` and whose ``addr`` contains the
    reference's ``addr`` is the spent output.
    """

    def __init__(self, store: GraphStore, strategy: str = "index"):
        """Initialize the resolver.

        Args:
            store: Graph store holding the committed chain
            strategy: ``index`` looks transactions up by their tx_index
                property, ``traversal`` walks the graph breadth-first from the
                spending transaction

        Raises:
            ValueError: If the strategy is unknown
        """
        if strategy not in RESOLVE_STRATEGIES:
            raise ValueError(f"Unknown resolve strategy: {strategy}")
        self.store = store
        self.strategy = strategy
        self.stats: Counter = Counter()

    async def find_transactions(self, prev_out: PrevOut, spending_tx: Node) -> AsyncIterator[Node]:
        """Yield transaction nodes carrying the reference's tx_index."""
        if self.strategy == 'index':
            for node in await self.store.find_nodes('tx_index', prev_out.tx_index):
                yield node
            return

        async with aclosing(self.store.traverse(spending_tx)) as nodes:
            async for node in nodes:
                if node.get('tx_index') == prev_out.tx_index:
                    yield node

    async def find_output(self, tx_node: Node, prev_out: PrevOut) -> Optional[Node]:
        """Return the first output of tx_node matching the reference, if any."""
        for output in await self.store.neighbors(tx_node, Relationship.SENT, Direction.OUTGOING):
            addr = output.get('addr')
            if addr is None or output.get('n') is None:
                continue
            if output.get('n') == prev_out.n and prev_out.addr in addr:
                return output
        return None

    async def resolve(self, prev_out: PrevOut, spending_tx: Node) -> Resolution:
        """Settle one spend reference.

        Args:
            prev_out: Spend reference of one of the transaction's inputs
            spending_tx: Persisted node of the spending transaction

        Returns:
            MATCHED with the settled output, or SKIPPED with the reason the
            reference could not be settled
        """
        if not prev_out.addr:
            return self._skip(SkipReason.NO_ADDRESS, prev_out)

        found_transaction = False
        async with aclosing(self.find_transactions(prev_out, spending_tx)) as candidates:
            async for tx_node in candidates:
                found_transaction = True
                output = await self.find_output(tx_node, prev_out)
                if output is None:
                    continue

                if await self.store.has_relationship(output, Relationship.RECEIVED, Direction.OUTGOING):
                    return self._skip(SkipReason.ALREADY_SPENT, prev_out)

                await self.store.create_edge(
                    output,
                    spending_tx,
                    Relationship.RECEIVED,
                    {'tx_index': prev_out.tx_index}
                )
                self.stats[ResolutionOutcome.MATCHED.value] += 1
                return Resolution(ResolutionOutcome.MATCHED, output=output)

        reason = SkipReason.MISSING_OUTPUT if found_transaction else SkipReason.MISSING_TRANSACTION
        return self._skip(reason, prev_out)

    def _skip(self, reason: SkipReason, prev_out: PrevOut) -> Resolution:
        self.stats[ResolutionOutcome.SKIPPED.value] += 1
        self.stats[reason.value] += 1
        logger.debug(
            f"Unresolved spend of output {prev_out.n} of tx_index {prev_out.tx_index} "
            f"({prev_out.addr}): {reason.value}"
        )
        return Resolution(ResolutionOutcome.SKIPPED, reason)

# Export public interface
__all__ = ['UTXOResolver', 'Resolution', 'ResolutionOutcome', 'SkipReason', 'RESOLVE_STRATEGIES']
