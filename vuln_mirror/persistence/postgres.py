"""
PostgreSQL store on top of an asyncpg pool.

One session is one pooled connection inside `conn.transaction()`. When a
`lock_key` is given the transaction first takes a transaction scoped advisory
lock on it, so concurrent reconciliations of the same vulnerability queue up
behind each other and the lock is released by COMMIT or ROLLBACK.
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

import asyncpg

from ..config.database_config import create_database_pool
from ..models import (AFFECTED_SOFTWARE_FIELDS, AffectedSoftware,
                      AffectedVersionAttribution, Severity, Source,
                      Vulnerability)
from ..sources.base.exceptions import ReconciliationException
from .base import Store, StoreSession
from .schema import SCHEMA_QUERIES

logger = logging.getLogger(__name__)

# Columns written on insert and update, in order; severity is handled separately
VULNERABILITY_COLUMNS = [
    'title', 'sub_title', 'description', 'detail', 'recommendation', 'references', 'credits',
    'created', 'published', 'updated', 'cwes',
    'cvss_v2_base_score', 'cvss_v2_impact_sub_score', 'cvss_v2_exploitability_sub_score', 'cvss_v2_vector',
    'cvss_v3_base_score', 'cvss_v3_impact_sub_score', 'cvss_v3_exploitability_sub_score', 'cvss_v3_vector',
    'owasp_rr_likelihood_score', 'owasp_rr_technical_impact_score', 'owasp_rr_business_impact_score',
    'owasp_rr_vector', 'vulnerable_versions', 'patched_versions', 'epss_score', 'epss_percentile',
]


def _quote(column: str) -> str:
    return f'"{column}"'


def row_to_vulnerability(row) -> Vulnerability:
    values = {column: row[column] for column in VULNERABILITY_COLUMNS}
    values['cwes'] = list(values['cwes'] or [])
    return Vulnerability(
        id=row['id'],
        source=Source(row['source']),
        vuln_id=row['vuln_id'],
        explicit_severity=Severity(row['severity']) if row['severity'] else None,
        **values,
    )


def row_to_affected_software(row) -> AffectedSoftware:
    return AffectedSoftware(id=row['id'], **{name: row[name] for name in AFFECTED_SOFTWARE_FIELDS})


def row_to_attribution(row) -> AffectedVersionAttribution:
    return AffectedVersionAttribution(
        id=row['id'],
        vulnerability_id=row['vulnerability_id'],
        affected_software_id=row['affected_software_id'],
        source=Source(row['source']),
        first_seen=row['first_seen'],
        last_seen=row['last_seen'],
    )


class PostgresSession(StoreSession):

    def __init__(self, conn: asyncpg.Connection, locked: bool = False):
        self.conn = conn
        # Row locks only make sense once the advisory lock serializes writers
        self.locked = locked

    async def get_vulnerability(self, source: Source, vuln_id: str) -> Optional[Vulnerability]:
        query = "SELECT * FROM vulnerabilities WHERE source = $1 AND vuln_id = $2"
        if self.locked:
            query += " FOR UPDATE"
        row = await self.conn.fetchrow(query, source.value, vuln_id)
        return row_to_vulnerability(row) if row else None

    def _vulnerability_values(self, vuln: Vulnerability) -> List[Any]:
        values = [getattr(vuln, column) for column in VULNERABILITY_COLUMNS]
        values.append(vuln.severity.value)
        return values

    async def insert_vulnerability(self, vuln: Vulnerability) -> Vulnerability:
        columns = ['source', 'vuln_id'] + VULNERABILITY_COLUMNS + ['severity']
        placeholders = ', '.join(f'${i}' for i in range(1, len(columns) + 1))
        query = f"""
            INSERT INTO vulnerabilities ({', '.join(_quote(c) for c in columns)})
            VALUES ({placeholders})
            ON CONFLICT (source, vuln_id) DO NOTHING
            RETURNING *
        """
        row = await self.conn.fetchrow(query, vuln.source.value, vuln.vuln_id, *self._vulnerability_values(vuln))
        if row is None:
            raise ReconciliationException("Duplicate natural key", source_name=vuln.source.value,
                                          vuln_id=vuln.vuln_id)
        return row_to_vulnerability(row)

    async def update_vulnerability(self, vuln: Vulnerability):
        if vuln.id is None:
            raise ReconciliationException("Vulnerability is not persistent", vuln_id=vuln.vuln_id)

        columns = VULNERABILITY_COLUMNS + ['severity']
        assignments = ', '.join(f'{_quote(c)} = ${i}' for i, c in enumerate(columns, start=1))
        query = f"UPDATE vulnerabilities SET {assignments} WHERE id = ${len(columns) + 1}"
        await self.conn.execute(query, *self._vulnerability_values(vuln), vuln.id)

    async def get_affected_software(self, vulnerability_id: int) -> List[AffectedSoftware]:
        rows = await self.conn.fetch("""
            SELECT s.* FROM affected_software s
            JOIN vulnerability_affected_software vas ON vas.affected_software_id = s.id
            WHERE vas.vulnerability_id = $1
            ORDER BY s.id
        """, vulnerability_id)
        return [row_to_affected_software(row) for row in rows]

    async def get_attributions(self, vulnerability_id: int,
                               affected_software_ids: Iterable[int]) -> Dict[int, List[AffectedVersionAttribution]]:
        rows = await self.conn.fetch("""
            SELECT * FROM affected_version_attributions
            WHERE vulnerability_id = $1 AND affected_software_id = ANY($2::bigint[])
        """, vulnerability_id, list(affected_software_ids))

        attributions: Dict[int, List[AffectedVersionAttribution]] = {}
        for row in rows:
            attribution = row_to_attribution(row)
            attributions.setdefault(attribution.affected_software_id, []).append(attribution)
        return attributions

    async def find_affected_software(self, affected: AffectedSoftware) -> Optional[AffectedSoftware]:
        # NULL bounds are part of the identity, so plain '=' would never match them
        conditions = ' AND '.join(f'{_quote(name)} IS NOT DISTINCT FROM ${i}'
                                  for i, name in enumerate(AFFECTED_SOFTWARE_FIELDS, start=1))
        row = await self.conn.fetchrow(
            f"SELECT * FROM affected_software WHERE {conditions} ORDER BY id LIMIT 1",
            *affected.key)
        return row_to_affected_software(row) if row else None

    async def insert_affected_software(self, affected: AffectedSoftware) -> AffectedSoftware:
        columns = ', '.join(_quote(name) for name in AFFECTED_SOFTWARE_FIELDS)
        placeholders = ', '.join(f'${i}' for i in range(1, len(AFFECTED_SOFTWARE_FIELDS) + 1))
        row = await self.conn.fetchrow(
            f"INSERT INTO affected_software ({columns}) VALUES ({placeholders}) RETURNING *",
            *affected.key)
        return row_to_affected_software(row)

    async def has_attribution(self, vulnerability_id: int, affected_software_id: int,
                              source: Source) -> bool:
        return await self.conn.fetchval("""
            SELECT EXISTS (
                SELECT 1 FROM affected_version_attributions
                WHERE vulnerability_id = $1 AND affected_software_id = $2 AND source = $3
            )
        """, vulnerability_id, affected_software_id, source.value)

    async def insert_attribution(self, attribution: AffectedVersionAttribution) -> AffectedVersionAttribution:
        row = await self.conn.fetchrow("""
            INSERT INTO affected_version_attributions
                (vulnerability_id, affected_software_id, source, first_seen, last_seen)
            VALUES ($1, $2, $3, $4, $5)
            ON CONFLICT (vulnerability_id, affected_software_id, source) DO NOTHING
            RETURNING *
        """, attribution.vulnerability_id, attribution.affected_software_id, attribution.source.value,
            attribution.first_seen, attribution.last_seen)
        if row is None:
            raise ReconciliationException("Duplicate attribution", source_name=attribution.source.value)
        return row_to_attribution(row)

    @staticmethod
    def _affected_rows(status: str) -> int:
        # asyncpg returns the command tag, e.g. 'UPDATE 3'
        try:
            return int(status.split()[-1])
        except (AttributeError, IndexError, ValueError):
            return 0

    async def touch_attributions(self, vulnerability_id: int, affected_software_ids: Iterable[int],
                                 source: Source, seen_at: datetime) -> int:
        status = await self.conn.execute("""
            UPDATE affected_version_attributions SET last_seen = $4
            WHERE vulnerability_id = $1 AND affected_software_id = ANY($2::bigint[]) AND source = $3
        """, vulnerability_id, list(affected_software_ids), source.value, seen_at)
        return self._affected_rows(status)

    async def delete_attributions(self, vulnerability_id: int, affected_software_ids: Iterable[int],
                                  source: Source) -> int:
        status = await self.conn.execute("""
            DELETE FROM affected_version_attributions
            WHERE vulnerability_id = $1 AND affected_software_id = ANY($2::bigint[]) AND source = $3
        """, vulnerability_id, list(affected_software_ids), source.value)
        return self._affected_rows(status)

    async def set_affected_software(self, vulnerability_id: int, affected_software_ids: Iterable[int]):
        ids = list(affected_software_ids)
        await self.conn.execute("""
            DELETE FROM vulnerability_affected_software
            WHERE vulnerability_id = $1 AND NOT (affected_software_id = ANY($2::bigint[]))
        """, vulnerability_id, ids)
        if ids:
            await self.conn.executemany("""
                INSERT INTO vulnerability_affected_software (vulnerability_id, affected_software_id)
                VALUES ($1, $2)
                ON CONFLICT DO NOTHING
            """, [(vulnerability_id, vs_id) for vs_id in ids])

    async def get_config_property(self, group_name: str, property_name: str) -> Optional[str]:
        return await self.conn.fetchval("""
            SELECT property_value FROM config_properties
            WHERE group_name = $1 AND property_name = $2
        """, group_name, property_name)

    async def set_config_property(self, group_name: str, property_name: str, value: Optional[str]):
        await self.conn.execute("""
            INSERT INTO config_properties (group_name, property_name, property_value)
            VALUES ($1, $2, $3)
            ON CONFLICT (group_name, property_name)
            DO UPDATE SET property_value = EXCLUDED.property_value
        """, group_name, property_name, value)


class PostgresStore(Store):
    """Store backed by an asyncpg connection pool"""

    def __init__(self, pool: asyncpg.Pool):
        self.pool = pool

    @classmethod
    async def create(cls, config: Dict[str, Any] = None, environment: str = None) -> 'PostgresStore':
        pool = await create_database_pool(config, environment)
        logger.info("✅ Connected to vulnerability database")
        return cls(pool)

    async def initialize_schema(self):
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                for query in SCHEMA_QUERIES:
                    await conn.execute(query)
        logger.info("🏗️ Database schema is up to date")

    @asynccontextmanager
    async def transaction(self, lock_key: Optional[str] = None):
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                if lock_key:
                    await conn.execute("SELECT pg_advisory_xact_lock(hashtext($1))", lock_key)
                yield PostgresSession(conn, locked=bool(lock_key))

    async def close(self):
        await self.pool.close()
        logger.info("🔌 Database pool closed")
