"""Database schema management module.

This module handles versioning of the graph tables. Each ``database/schema/vN.py``
file declares a ``schema`` dict; a fresh database gets the latest version's
tables and indexes, an existing one gets the ``migrations`` of every newer
version applied in order.
"""
import importlib
import logging
from pathlib import Path
from typing import Dict, Any, Optional

from ..exceptions import DatabaseSchemaError

logger = logging.getLogger(__name__)

SCHEMA_DIR = Path(__file__).resolve().parent.parent / 'schema'

class SchemaManager:
    """Manages database schema versioning and migrations."""

    def __init__(self, pool, schema_dir: Optional[Path] = None) -> None:
        """Initialize schema manager.

        Args:
            pool: Database connection pool
            schema_dir: Directory containing schema version files
        """
        self.pool = pool
        self._schema_dir = Path(schema_dir) if schema_dir else SCHEMA_DIR
        self.current_version = 0

    async def initialize(self) -> None:
        """Create the version table if needed and apply pending migrations.

        Raises:
            DatabaseSchemaError: If no schema files are found or a migration fails
        """
        try:
            async with self.pool.acquire() as conn:
                await conn.execute('''
                    CREATE TABLE IF NOT EXISTS schema_version (
                        version INT8 PRIMARY KEY,
                        applied_at TIMESTAMP NOT NULL DEFAULT now()
                    )
                ''')
                self.current_version = await conn.fetchval(
                    'SELECT COALESCE(MAX(version), 0) FROM schema_version'
                )

            schema_files = self.load_schema_files()
            if not schema_files:
                raise DatabaseSchemaError(f"No valid schema files found in {self._schema_dir}")

            await self._apply_migrations(schema_files)

        except DatabaseSchemaError:
            raise
        except Exception as e:
            logger.error(f"Schema initialization failed: {e}")
            raise DatabaseSchemaError(f"Failed to initialize schema: {e}") from e

    def load_schema_files(self) -> Dict[int, Dict[str, Any]]:
        """Load all schema version files.

        Returns:
            Dict mapping version numbers to schema definitions, ascending

        Raises:
            DatabaseSchemaError: If a schema file is malformed
        """
        schema_files = {}
        if not self._schema_dir.exists():
            return schema_files

        for file in self._schema_dir.glob('v*.py'):
            try:
                version = int(file.stem[1:])
            except ValueError:
                logger.warning(f"Invalid schema filename: {file}")
                continue

            module = importlib.import_module(f"database.schema.{file.stem}")
            schema = getattr(module, 'schema', None)
            if schema is None:
                raise DatabaseSchemaError(f"Schema file {file} missing 'schema' definition")
            if schema['version'] != version:
                raise DatabaseSchemaError(
                    f"Schema version mismatch in {file}: "
                    f"Expected v{version}, got v{schema['version']}"
                )
            schema_files[version] = schema

        return dict(sorted(schema_files.items()))

    async def _apply_migrations(self, schema_files: Dict[int, Dict[str, Any]]) -> None:
        latest_version = max(schema_files)
        if self.current_version >= latest_version:
            logger.info(f"Schema is up to date at version {self.current_version}")
            return

        logger.info(f"Updating schema from version {self.current_version} to {latest_version}")

        async with self.pool.acquire() as conn:
            async with conn.transaction():
                if self.current_version == 0:
                    await self._create_fresh_schema(conn, schema_files[latest_version])
                else:
                    for version in range(self.current_version + 1, latest_version + 1):
                        if version not in schema_files:
                            continue
                        for migration in schema_files[version].get('migrations', []):
                            await conn.execute(migration)
                        await conn.execute(
                            'INSERT INTO schema_version (version) VALUES ($1)',
                            version
                        )
                        logger.info(f"Successfully migrated to version {version}")

        self.current_version = latest_version

    async def _create_fresh_schema(self, conn, schema: Dict[str, Any]) -> None:
        # Tables first so foreign keys can reference each other
        for table in schema.get('tables', []):
            await conn.execute(self._table_sql(table))
            logger.info(f"Created table {table['name']}")

        for table in schema.get('tables', []):
            for fk in table.get('foreign_keys', []):
                await conn.execute(f'''
                    ALTER TABLE {table['name']}
                    ADD CONSTRAINT fk_{table['name']}_{fk['columns'][0]}
                    FOREIGN KEY ({', '.join(fk['columns'])})
                    REFERENCES {fk['references']}
                ''')
            for idx in table.get('indexes', []):
                await conn.execute(self._index_sql(table['name'], idx))
                logger.info(f"Created index {idx['name']} on {table['name']}")

        await conn.execute(
            'INSERT INTO schema_version (version) VALUES ($1)',
            schema['version']
        )
        logger.info(f"Successfully created fresh schema version {schema['version']}")

    @staticmethod
    def _table_sql(table: Dict[str, Any]) -> str:
        columns = []
        for col in table['columns']:
            col_def = f"{col['name']} {col['type']}"
            if col.get('primary_key'):
                col_def += " PRIMARY KEY"
            if 'default' in col:
                col_def += f" DEFAULT {col['default']}"
            if col.get('nullable') is False:
                col_def += " NOT NULL"
            columns.append(col_def)
        return f"CREATE TABLE IF NOT EXISTS {table['name']} ({', '.join(columns)})"

    @staticmethod
    def _index_sql(table_name: str, idx: Dict[str, Any]) -> str:
        unique = 'UNIQUE ' if idx.get('unique') else ''
        using = f" USING {idx['using']}" if 'using' in idx else ''
        where = f" WHERE {idx['where']}" if 'where' in idx else ''
        return (
            f"CREATE {unique}INDEX IF NOT EXISTS {idx['name']} "
            f"ON {table_name}{using} ({', '.join(idx['columns'])}){where}"
        )
