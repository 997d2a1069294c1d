"""Command line interface for testing ledger API access"""
from config import load_config, SettingsError, DEFAULTS
from . import LedgerClient, SourceUnavailable, FetchFailed

def test_ledger():
    """Fetch the chain head and the block it points at"""
    try:
        settings = load_config()
    except SettingsError:
        settings = {'ledger_url': DEFAULTS['ledger_url'], 'ledger_timeout': float(DEFAULTS['ledger_timeout'])}

    client = LedgerClient(settings['ledger_url'], settings['ledger_timeout'])
    try:
        print("\nTesting ledger API:")
        print("-" * 50)

        print("1. Testing latest block:")
        latest = client.get_latest()
        print(f"  Success! Head block index: {latest.block_index} (height {latest.height})")

        print("\n2. Testing block fetch:")
        block = client.get_block(latest.block_index)
        print(f"  Success! Block hash: {block.hash}")
        print(f"  Time: {block.time}")
        print(f"  Transactions: {len(block.tx)}")
        spends = sum(1 for tx in block.tx for _ in tx.spent_outputs())
        print(f"  Spend references: {spends}")

    except SourceUnavailable as e:
        print("\nLedger API unavailable:")
        print(f"  {str(e)}")

    except FetchFailed as e:
        print(f"\nBlock fetch failed for index {e.index}:")
        print(f"  {str(e)}")

    finally:
        client.close()

if __name__ == "__main__":
    test_ledger()
