"""SQL storage for placement reports.

Defines the report tables with SQLAlchemy Core and implements IReportSink
on top of an async session. The schema is append-only: tables are created
if missing, and columns are only ever added.

Tables:
- placement_started_events  One row per placement that started in a run's window
- placement_ended_events    One row per placement that ended in a run's window
- analysis_runs             One marker row per completed run; re-running a
                            window appends another marker with the same run_id
"""

from collections.abc import Mapping, Sequence
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import (
    JSON,
    BigInteger,
    Column,
    DateTime,
    Integer,
    MetaData,
    String,
    Table,
    func,
    insert,
    select,
)
from sqlalchemy.ext.asyncio import AsyncSession

from license_tracker.core.services import (
    ANALYSIS_RUNS_TABLE,
    PLACEMENT_ENDED_TABLE,
    PLACEMENT_STARTED_TABLE,
)
from license_tracker.observability import get_logger

logger = get_logger(__name__)

metadata = MetaData()

placement_started_events = Table(
    PLACEMENT_STARTED_TABLE,
    metadata,
    Column("run_id", BigInteger, nullable=False, index=True),
    Column("instance_id", BigInteger, nullable=False),
    Column("instance_project_id", String(255), nullable=False),
    Column("instance_zone", String(255), nullable=False),
    Column("instance_name", String(255), nullable=False),
    Column("image_project_id", String(255)),
    Column("image_name", String(255)),
    Column("date", DateTime(timezone=True), nullable=False),
    Column("tenancy", String(1)),
    Column("server_id", String(255)),
    Column("node_type", String(255)),
    Column("node_project_id", String(255)),
    Column("operating_system_family", String(16)),
    Column("license", String(1024)),
    Column("license_type", String(16)),
    Column("machine_type", String(255)),
    Column("vcpu_count", Integer),
    Column("memory_mb", BigInteger),
    Column("maintenance_policy", String(32)),
    Column("vcpu_min_allocated", Integer),
    Column("labels", JSON, nullable=False),
)

placement_ended_events = Table(
    PLACEMENT_ENDED_TABLE,
    metadata,
    Column("run_id", BigInteger, nullable=False, index=True),
    Column("instance_id", BigInteger, nullable=False),
    Column("date", DateTime(timezone=True), nullable=False),
)

analysis_runs = Table(
    ANALYSIS_RUNS_TABLE,
    metadata,
    Column("run_id", BigInteger, nullable=False, index=True),
    Column("date", DateTime(timezone=True), nullable=False),
    Column("version", BigInteger, nullable=False),
)

_TABLES = {table.name: table for table in metadata.sorted_tables}


class SqlReportSink:
    """Report sink backed by a SQL database.

    Args:
        session: An async session from get_db_session(). The caller owns the
            transaction.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def prepare(self) -> None:
        """Create report tables that do not exist yet."""
        connection = await self._session.connection()
        await connection.run_sync(metadata.create_all)

    async def insert_rows(self, table: str, rows: Sequence[Mapping[str, Any]]) -> None:
        """Append rows to a report table.

        Raises:
            ValueError: If the table is not a report table.
        """
        if table not in _TABLES:
            raise ValueError(f"Unknown report table: {table}")
        if not rows:
            return

        await self._session.execute(insert(_TABLES[table]), [dict(row) for row in rows])
        logger.debug("Inserted report rows", table=table, row_count=len(rows))

    async def get_last_run_date(self) -> datetime | None:
        result = await self._session.execute(select(func.max(analysis_runs.c.date)))
        last_run_date = result.scalar()
        if last_run_date is not None and last_run_date.tzinfo is None:
            # Databases without time zone support return naive UTC values.
            last_run_date = last_run_date.replace(tzinfo=UTC)
        return last_run_date
