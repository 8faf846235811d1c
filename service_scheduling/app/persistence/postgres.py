"""
PostgreSQL persistence layer for the Scheduling Service.
"""

import json
from datetime import datetime, time
from typing import Any, Dict, List, Optional, Sequence

import asyncpg

from shared.errors import UpstreamUnavailableError
from shared.logging import get_logger
from shared.retry import RetryConfig, RetryError, retry_call
from ..preload.day_data import Appointment, Practitioner
from ..rules.codec import encode_condition_value, node_from_record
from ..rules.models import RuleConditionNode
from ..scheduling.models import BaseSchedule, BreakTime, Location, ManualBlock

SCHEMA = """
    CREATE TABLE IF NOT EXISTS rule_sets (
        id VARCHAR(255) PRIMARY KEY,
        tenant_id VARCHAR(255) NOT NULL,
        is_active BOOLEAN NOT NULL DEFAULT FALSE,
        created_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW()
    );

    CREATE TABLE IF NOT EXISTS rule_conditions (
        id VARCHAR(255) PRIMARY KEY,
        tenant_id VARCHAR(255) NOT NULL,
        rule_set_id VARCHAR(255) NOT NULL,
        node_type VARCHAR(20) NOT NULL,
        is_root BOOLEAN NOT NULL DEFAULT FALSE,
        enabled BOOLEAN NOT NULL DEFAULT TRUE,
        parent_id VARCHAR(255) REFERENCES rule_conditions(id),
        child_order INTEGER NOT NULL DEFAULT 0,
        condition_type VARCHAR(50),
        operator VARCHAR(50),
        value_ids TEXT[],
        value_number DOUBLE PRECISION,
        scope VARCHAR(20),
        created_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW()
    );

    CREATE TABLE IF NOT EXISTS practitioners (
        id VARCHAR(255) PRIMARY KEY,
        tenant_id VARCHAR(255) NOT NULL,
        name VARCHAR(255) NOT NULL,
        tags TEXT[] NOT NULL DEFAULT '{}'
    );

    CREATE TABLE IF NOT EXISTS locations (
        id VARCHAR(255) PRIMARY KEY,
        tenant_id VARCHAR(255) NOT NULL,
        name VARCHAR(255) NOT NULL,
        created_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW()
    );

    CREATE TABLE IF NOT EXISTS appointments (
        id VARCHAR(255) PRIMARY KEY,
        tenant_id VARCHAR(255) NOT NULL,
        start_time TIMESTAMP WITH TIME ZONE NOT NULL,
        duration_minutes INTEGER NOT NULL DEFAULT 5,
        appointment_type_id VARCHAR(255) NOT NULL,
        practitioner_id VARCHAR(255) NOT NULL,
        location_id VARCHAR(255)
    );

    CREATE TABLE IF NOT EXISTS base_schedules (
        id VARCHAR(255) PRIMARY KEY,
        tenant_id VARCHAR(255) NOT NULL,
        practitioner_id VARCHAR(255) NOT NULL,
        day_of_week SMALLINT NOT NULL,
        start_time TIME NOT NULL,
        end_time TIME NOT NULL,
        location_id VARCHAR(255),
        break_times JSONB NOT NULL DEFAULT '[]'
    );

    CREATE TABLE IF NOT EXISTS manual_blocks (
        id VARCHAR(255) PRIMARY KEY,
        tenant_id VARCHAR(255) NOT NULL,
        start_time TIMESTAMP WITH TIME ZONE NOT NULL,
        end_time TIMESTAMP WITH TIME ZONE NOT NULL,
        practitioner_id VARCHAR(255),
        location_id VARCHAR(255),
        title VARCHAR(255)
    );
"""

INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_rule_conditions_rule_set ON rule_conditions(tenant_id, rule_set_id);",
    "CREATE INDEX IF NOT EXISTS idx_rule_conditions_parent ON rule_conditions(parent_id, child_order);",
    "CREATE INDEX IF NOT EXISTS idx_appointments_tenant_start ON appointments(tenant_id, start_time);",
    "CREATE INDEX IF NOT EXISTS idx_manual_blocks_tenant_start ON manual_blocks(tenant_id, start_time);",
    "CREATE INDEX IF NOT EXISTS idx_base_schedules_tenant ON base_schedules(tenant_id, practitioner_id);",
]


def _parse_break_times(raw: Any) -> tuple:
    items = json.loads(raw) if isinstance(raw, str) else (raw or [])
    return tuple(
        BreakTime(start=time.fromisoformat(item["start"]), end=time.fromisoformat(item["end"]))
        for item in items
    )


class PostgreSQLPersistence:
    """PostgreSQL implementation of the scheduling data source."""

    def __init__(self, dsn: str, min_size: int = 2, max_size: int = 10,
                 retry_config: Optional[RetryConfig] = None):
        self.dsn = dsn
        self.min_size = min_size
        self.max_size = max_size
        self.retry_config = retry_config or RetryConfig(max_attempts=3, base_delay=0.2, max_delay=2.0)
        self.logger = get_logger("scheduling.persistence.postgres")
        self.pool: Optional[asyncpg.Pool] = None

    async def start(self):
        """Start the persistence layer."""
        try:
            self.pool = await asyncpg.create_pool(
                self.dsn,
                min_size=self.min_size,
                max_size=self.max_size,
                command_timeout=30
            )

            await self._create_tables()

            self.logger.info("PostgreSQL persistence started")

        except (OSError, asyncpg.PostgresError) as e:
            self.logger.error("Failed to start PostgreSQL persistence", error=str(e))
            raise UpstreamUnavailableError("postgres", str(e))

    async def stop(self):
        """Stop the persistence layer."""
        if self.pool:
            await self.pool.close()
            self.logger.info("PostgreSQL persistence stopped")

    async def _create_tables(self):
        async with self.pool.acquire() as conn:
            await conn.execute(SCHEMA)
            for statement in INDEXES:
                await conn.execute(statement)

    async def _fetch(self, source: str, query: str, *args) -> List[asyncpg.Record]:
        """Run a read with retries; exhaustion becomes UpstreamUnavailableError."""
        if self.pool is None:
            raise UpstreamUnavailableError(source, "persistence not started")

        async def fetch():
            async with self.pool.acquire() as conn:
                return await conn.fetch(query, *args)

        try:
            return await retry_call(
                fetch,
                config=self.retry_config,
                exceptions=(OSError, asyncpg.PostgresError, asyncpg.InterfaceError)
            )
        except RetryError as e:
            self.logger.error("Upstream read failed", source=source, attempts=e.attempts,
                              error=str(e.last_exception))
            raise UpstreamUnavailableError(source, str(e.last_exception), {"attempts": e.attempts}) from e

    async def load_rule_nodes(self, tenant_id: str, rule_set_id: str) -> List[RuleConditionNode]:
        """Every node of the rule set, roots in stored order."""
        rows = await self._fetch("rule_conditions", """
            WITH RECURSIVE subtree AS (
                SELECT * FROM rule_conditions
                WHERE tenant_id = $1 AND rule_set_id = $2 AND is_root = TRUE
                UNION ALL
                SELECT c.* FROM rule_conditions c
                JOIN subtree s ON c.parent_id = s.id
            )
            SELECT id, tenant_id, rule_set_id, node_type, is_root, enabled, parent_id, child_order,
                   condition_type, operator, value_ids, value_number, scope
            FROM subtree
            ORDER BY is_root DESC, child_order ASC, created_at ASC, id ASC
        """, tenant_id, rule_set_id)
        return [node_from_record(row) for row in rows]

    async def load_practitioners(self, tenant_id: str) -> List[Practitioner]:
        rows = await self._fetch("practitioners", """
            SELECT id, name, tags FROM practitioners WHERE tenant_id = $1 ORDER BY name, id
        """, tenant_id)
        return [
            Practitioner(id=row["id"], name=row["name"], tags=frozenset(row["tags"] or ()))
            for row in rows
        ]

    async def load_locations(self, tenant_id: str) -> List[Location]:
        rows = await self._fetch("locations", """
            SELECT id, name FROM locations WHERE tenant_id = $1 ORDER BY created_at, id
        """, tenant_id)
        return [Location(id=row["id"], name=row["name"]) for row in rows]

    async def load_appointments(self, tenant_id: str, day_start: datetime,
                                day_end: datetime) -> List[Appointment]:
        """Appointments starting in [day_start, day_end), via the (tenant_id, start_time) index."""
        rows = await self._fetch("appointments", """
            SELECT id, start_time, duration_minutes, appointment_type_id, practitioner_id, location_id
            FROM appointments
            WHERE tenant_id = $1 AND start_time >= $2 AND start_time < $3
            ORDER BY start_time
        """, tenant_id, day_start, day_end)
        return [
            Appointment(
                id=row["id"],
                start=row["start_time"],
                appointment_type_id=row["appointment_type_id"],
                practitioner_id=row["practitioner_id"],
                location_id=row["location_id"],
                duration_minutes=row["duration_minutes"]
            )
            for row in rows
        ]

    async def load_base_schedules(self, tenant_id: str) -> List[BaseSchedule]:
        rows = await self._fetch("base_schedules", """
            SELECT id, practitioner_id, day_of_week, start_time, end_time, location_id, break_times
            FROM base_schedules WHERE tenant_id = $1
            ORDER BY practitioner_id, day_of_week, start_time
        """, tenant_id)
        return [
            BaseSchedule(
                id=row["id"],
                practitioner_id=row["practitioner_id"],
                day_of_week=row["day_of_week"],
                start_time=row["start_time"],
                end_time=row["end_time"],
                location_id=row["location_id"],
                break_times=_parse_break_times(row["break_times"])
            )
            for row in rows
        ]

    async def load_manual_blocks(self, tenant_id: str, day_start: datetime,
                                 day_end: datetime) -> List[ManualBlock]:
        """Blocks overlapping [day_start, day_end)."""
        rows = await self._fetch("manual_blocks", """
            SELECT id, start_time, end_time, practitioner_id, location_id, title
            FROM manual_blocks
            WHERE tenant_id = $1 AND start_time < $3 AND end_time > $2
            ORDER BY start_time
        """, tenant_id, day_start, day_end)
        return [
            ManualBlock(
                id=row["id"],
                start=row["start_time"],
                end=row["end_time"],
                practitioner_id=row["practitioner_id"],
                location_id=row["location_id"],
                title=row["title"]
            )
            for row in rows
        ]

    async def load_active_rule_set_id(self, tenant_id: str) -> Optional[str]:
        rows = await self._fetch("rule_sets", """
            SELECT id FROM rule_sets WHERE tenant_id = $1 AND is_active = TRUE
            ORDER BY created_at DESC LIMIT 1
        """, tenant_id)
        return rows[0]["id"] if rows else None

    async def save_rule_nodes(self, nodes: Sequence[RuleConditionNode]) -> None:
        """Insert a rule root and its subtree in one transaction."""
        if self.pool is None:
            raise UpstreamUnavailableError("rule_conditions", "persistence not started")

        records = []
        for node in nodes:
            value_ids, value_number, scope = (None, None, None)
            if node.value is not None:
                value_ids, value_number, scope = encode_condition_value(node.value)
            records.append((
                node.id, node.tenant_id, node.rule_set_id, node.node_type.value, node.is_root,
                node.enabled, node.parent_id, node.child_order,
                node.condition_type.value if node.condition_type else None,
                node.operator.value if node.operator else None,
                value_ids, value_number, scope
            ))

        try:
            async with self.pool.acquire() as conn:
                async with conn.transaction():
                    await conn.executemany("""
                        INSERT INTO rule_conditions (
                            id, tenant_id, rule_set_id, node_type, is_root, enabled, parent_id,
                            child_order, condition_type, operator, value_ids, value_number, scope
                        ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13)
                    """, records)
        except (OSError, asyncpg.PostgresError) as e:
            self.logger.error("Error saving rule", rule_id=nodes[0].id if nodes else None, error=str(e))
            raise UpstreamUnavailableError("rule_conditions", str(e))

        self.logger.info("Rule saved", rule_id=nodes[0].id if nodes else None, node_count=len(nodes))

    async def health_check(self) -> Dict[str, str]:
        if self.pool is None:
            return {"postgres": "not_started"}
        try:
            async with self.pool.acquire() as conn:
                await conn.fetchval("SELECT 1")
            return {"postgres": "ok"}
        except (OSError, asyncpg.PostgresError) as e:
            self.logger.warning("PostgreSQL health check failed", error=str(e))
            return {"postgres": "error"}
