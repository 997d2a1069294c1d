"""Ledger payload models.

Parses the JSON the remote ledger API returns for blocks and transactions and
exposes the property maps persisted on graph nodes.
"""
from typing import Any, Dict, Iterator, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class PrevOut(BaseModel):
    """Spend reference carried by a transaction input."""
    type: Optional[int] = None
    addr: Optional[str] = None
    value: int = 0
    n: int
    tx_index: int


class Input(BaseModel):
    prev_out: Optional[PrevOut] = None  # Coinbase inputs carry none
    script: Optional[str] = None
    sequence: Optional[int] = None


class Output(BaseModel):
    type: Optional[int] = None
    addr: Optional[str] = None
    value: int = 0
    n: Optional[int] = None
    tx_index: Optional[int] = None

    def node_properties(self, n: int) -> Dict[str, Any]:
        """Properties of the money node for the output at position n."""
        return {
            'type': self.type,
            'addr': self.addr,
            'value': self.value,
            'n': n
        }


class Transaction(BaseModel):
    hash: str
    ver: Optional[int] = None
    vin_sz: Optional[int] = None
    vout_sz: Optional[int] = None
    size: Optional[int] = None
    relayed_by: Optional[str] = None
    tx_index: int
    inputs: List[Input] = Field(default_factory=list)
    out: List[Output] = Field(default_factory=list)

    def node_properties(self) -> Dict[str, Any]:
        return {
            'hash': self.hash,
            'ver': self.ver,
            'vin_sz': self.vin_sz,
            'vout_sz': self.vout_sz,
            'size': self.size,
            'relayed_by': self.relayed_by,
            'tx_index': self.tx_index
        }

    def spent_outputs(self) -> Iterator[PrevOut]:
        """Yield the spend reference of every input that has one."""
        for tx_input in self.inputs:
            if tx_input.prev_out is not None:
                yield tx_input.prev_out


class Block(BaseModel):
    hash: str
    ver: Optional[int] = None
    prev_block: Optional[str] = None
    mrkl_root: Optional[str] = None
    time: Optional[int] = None
    bits: Optional[int] = None
    nonce: Optional[int] = None
    n_tx: Optional[int] = None
    size: Optional[int] = None
    block_index: int
    main_chain: Optional[bool] = None
    height: Optional[int] = None
    received_time: Optional[int] = None
    relayed_by: Optional[str] = None
    tx: List[Transaction] = Field(default_factory=list)

    def node_properties(self) -> Dict[str, Any]:
        return {
            'hash': self.hash,
            'ver': self.ver,
            'prev_block': self.prev_block,
            'mrkl_root': self.mrkl_root,
            'time': self.time,
            'bits': self.bits,
            'nonce': self.nonce,
            'n_tx': self.n_tx,
            'size': self.size,
            'block_index': self.block_index,
            'main_chain': self.main_chain,
            'height': self.height,
            'received_time': self.received_time,
            'relayed_by': self.relayed_by
        }


class LatestBlock(BaseModel):
    """Head of the remote chain."""
    model_config = ConfigDict(populate_by_name=True)

    hash: str
    time: Optional[int] = None
    block_index: int
    height: Optional[int] = None
    tx_indexes: List[int] = Field(default_factory=list, alias='txIndexes')
