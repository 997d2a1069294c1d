"""Ledger module for fetching blocks from the remote ledger API"""
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import requests
from pydantic import ValidationError

from .models import Block, Input, LatestBlock, Output, PrevOut, Transaction

logger = logging.getLogger(__name__)

DEFAULT_LEDGER_URL = 'https://blockchain.info'
DEFAULT_TIMEOUT = 10.0

class LedgerError(Exception):
    """Base exception for ledger source errors"""
    pass

class SourceUnavailable(LedgerError):
    """Raised when the chain head cannot be retrieved"""
    pass

class FetchFailed(LedgerError):
    """Raised when a specific block cannot be retrieved

    The ledger is immutable, so a failed fetch is always worth retrying.
    """
    def __init__(self, index: int, message: str):
        self.index = index
        super().__init__(f"Fetch of block {index} failed: {message}")

class LedgerSource(ABC):
    """Source of blocks, addressed by sequential block index."""

    @abstractmethod
    def get_latest_height(self) -> int:
        """Return the block index of the current chain head.

        Raises:
            SourceUnavailable: The source could not be reached
        """

    @abstractmethod
    def get_block(self, index: int) -> Block:
        """Return the block with the given block index.

        Raises:
            FetchFailed: The block could not be retrieved
        """

class LedgerClient(LedgerSource):
    """HTTP client for a blockchain.info style ledger API"""

    def __init__(self, base_url: str = DEFAULT_LEDGER_URL, timeout: float = DEFAULT_TIMEOUT,
                 session: Optional[requests.Session] = None):
        """Initialize ledger client.

        Args:
            base_url: Base URL of the ledger API
            timeout: Seconds to wait for each response
            session: Optional pre-configured requests session
        """
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers['accept'] = 'application/json'

    def _get(self, path: str, **params) -> Dict[str, Any]:
        """GET a JSON document from the API

        Raises:
            requests.exceptions.RequestException: Transport or HTTP error
            ValueError: Response body is not a JSON object
        """
        url = f"{self.base_url}/{path.lstrip('/')}"
        response = self.session.get(url, params=params or None, timeout=self.timeout)
        response.raise_for_status()
        payload = response.json()
        if not isinstance(payload, dict):
            raise ValueError(f"Expected a JSON object from {url}")
        return payload

    def get_latest(self) -> LatestBlock:
        """Fetch the head block summary

        Raises:
            SourceUnavailable: Request failed or returned an invalid payload
        """
        try:
            return LatestBlock.model_validate(self._get('latestblock'))
        except requests.exceptions.Timeout as e:
            raise SourceUnavailable(
                f"Request timed out after {self.timeout} seconds"
            ) from e
        except requests.exceptions.ConnectionError as e:
            raise SourceUnavailable(
                f"Failed to connect to ledger API at {self.base_url}"
            ) from e
        except requests.exceptions.RequestException as e:
            raise SourceUnavailable(f"Request failed: {str(e)}") from e
        except (ValidationError, ValueError) as e:
            raise SourceUnavailable(f"Invalid response format: {str(e)}") from e

    def get_latest_height(self) -> int:
        return self.get_latest().block_index

    def get_block(self, index: int) -> Block:
        """Fetch the block with the given block index

        Raises:
            FetchFailed: Request failed, returned an invalid payload, or
                returned a different block than requested
        """
        try:
            block = Block.model_validate(self._get(f'block-index/{index}', format='json'))
        except requests.exceptions.Timeout as e:
            raise FetchFailed(index, f"request timed out after {self.timeout} seconds") from e
        except requests.exceptions.RequestException as e:
            raise FetchFailed(index, f"request failed: {str(e)}") from e
        except (ValidationError, ValueError) as e:
            raise FetchFailed(index, f"invalid response format: {str(e)}") from e

        if block.block_index != index:
            raise FetchFailed(index, f"source returned block {block.block_index}")

        logger.debug(f"Fetched block {index} ({block.hash}) with {len(block.tx)} transactions")
        return block

    def close(self) -> None:
        self.session.close()

# Export public interface
__all__ = [
    'LedgerError',
    'SourceUnavailable',
    'FetchFailed',
    'LedgerSource',
    'LedgerClient',
    'Block',
    'Transaction',
    'Input',
    'Output',
    'PrevOut',
    'LatestBlock'
]
