"""Tests for the ledger API client and payload models."""

from unittest.mock import MagicMock

import pytest
import requests

from ledger import FetchFailed, LedgerClient, SourceUnavailable
from ledger.models import Block, LatestBlock

from tests.conftest import make_block, make_tx

def response(payload=None, status=200, json_error=None):
    resp = MagicMock()
    resp.status_code = status
    if status >= 400:
        resp.raise_for_status.side_effect = requests.exceptions.HTTPError(f"{status} Server Error")
    if json_error:
        resp.json.side_effect = json_error
    else:
        resp.json.return_value = payload
    return resp

@pytest.fixture
def session():
    session = MagicMock(spec=requests.Session)
    session.headers = {}
    return session

@pytest.fixture
def client(session):
    return LedgerClient('https://ledger.example/', timeout=5.0, session=session)

def test_latest_height(client, session):
    session.get.return_value = response(
        {'hash': 'abc', 'time': 1, 'block_index': 812, 'height': 811, 'txIndexes': [1, 2]}
    )

    assert client.get_latest_height() == 812
    session.get.assert_called_once_with(
        'https://ledger.example/latestblock', params=None, timeout=5.0
    )

@pytest.mark.parametrize('error', [
    requests.exceptions.ConnectionError("refused"),
    requests.exceptions.Timeout("slow"),
])
def test_latest_height_unavailable(client, session, error):
    session.get.side_effect = error

    with pytest.raises(SourceUnavailable):
        client.get_latest_height()

def test_latest_height_invalid_payload(client, session):
    session.get.return_value = response({'hash': 'abc'})

    with pytest.raises(SourceUnavailable):
        client.get_latest_height()

def test_get_block(client, session):
    raw = make_block(3, [make_tx(300, outputs=[('1A', 10)], spends=[(100, 0, '1B')])])
    session.get.return_value = response(raw)

    block = client.get_block(3)

    session.get.assert_called_once_with(
        'https://ledger.example/block-index/3', params={'format': 'json'}, timeout=5.0
    )
    assert block.block_index == 3
    assert block.tx[0].tx_index == 300
    assert [ref.tx_index for ref in block.tx[0].spent_outputs()] == [100]

@pytest.mark.parametrize('resp, side_effect', [
    (response(status=503), None),
    (response(json_error=ValueError("not json")), None),
    (response(['not', 'an', 'object']), None),
    (response({'hash': 'abc'}), None),
    (None, requests.exceptions.ConnectionError("reset")),
    (None, requests.exceptions.Timeout("slow")),
])
def test_get_block_failures(client, session, resp, side_effect):
    session.get.return_value = resp
    session.get.side_effect = side_effect

    with pytest.raises(FetchFailed) as exc:
        client.get_block(7)
    assert exc.value.index == 7

def test_get_block_rejects_other_index(client, session):
    session.get.return_value = response(make_block(8, []))

    with pytest.raises(FetchFailed) as exc:
        client.get_block(7)
    assert 'returned block 8' in str(exc.value)

def test_block_properties_keep_ledger_names():
    block = Block.model_validate(make_block(1, []))

    props = block.node_properties()

    assert set(props) == {
        'hash', 'ver', 'prev_block', 'mrkl_root', 'time', 'bits', 'nonce', 'n_tx',
        'size', 'block_index', 'main_chain', 'height', 'received_time', 'relayed_by'
    }
    assert props['block_index'] == 1

def test_transaction_properties_and_spends():
    raw = make_tx(9, outputs=[('1A', 10), (None, 0)], spends=[(1, 0, '1X'), (2, 3, '1Y')])
    raw['inputs'].append({'script': 'ff'})
    block = Block.model_validate(make_block(1, [raw]))
    tx = block.tx[0]

    assert set(tx.node_properties()) == {'hash', 'ver', 'vin_sz', 'vout_sz', 'size', 'relayed_by', 'tx_index'}
    assert [(ref.tx_index, ref.n) for ref in tx.spent_outputs()] == [(1, 0), (2, 3)]
    assert tx.out[1].node_properties(1) == {'type': 0, 'addr': None, 'value': 0, 'n': 1}

def test_latest_block_alias():
    latest = LatestBlock.model_validate({'hash': 'a', 'block_index': 4, 'txIndexes': [7]})

    assert latest.tx_indexes == [7]
