"""Command line interface for testing configuration loading"""
from . import load_config, SettingsError
from pathlib import Path

EXAMPLE_SETTINGS = """[DEFAULT]
# Remote ledger API
ledger_url = https://blockchain.info
ledger_timeout = 10

# Graph backend: postgres, neo4j or memory
graph_backend = postgres
db_url = postgresql://postgres@localhost:5432/ledger_graph
neo4j_uri = bolt://localhost:7687
neo4j_user = neo4j
neo4j_password =
neo4j_database = neo4j

# Spend resolution: index or traversal
resolve_strategy = index

# Request pacing (seconds)
pacing_delay = 2
backoff_delay = 30
poll_interval = 60

log_level = INFO
"""

def main():
    """Display loaded configuration"""
    print("\nSettings Configuration:")
    print("-" * 50)
    try:
        settings = load_config()
        for key, value in settings.items():
            if 'password' in key and value:
                value = '********'
            print(f"{key}: {value}")
    except SettingsError as e:
        print(str(e))

    # Save example configuration file
    examples_dir = Path("examples")
    examples_dir.mkdir(exist_ok=True)

    with open(examples_dir / "settings.conf.example", "w") as f:
        f.write(EXAMPLE_SETTINGS)
    print(f"\nWrote {examples_dir / 'settings.conf.example'}")

if __name__ == "__main__":
    main()
