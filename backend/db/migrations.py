"""Database migration utilities (PostgreSQL only; `create_all` never alters existing tables)"""
import logging

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine

logger = logging.getLogger(__name__)


async def _existing_columns(conn, table_name: str) -> set[str]:
    result = await conn.execute(
        text("""
            SELECT column_name
            FROM information_schema.columns
            WHERE table_name = :table_name
        """),
        {"table_name": table_name},
    )
    return {row[0] for row in result.fetchall()}


async def add_missing_user_columns(engine: AsyncEngine):
    """Add the organization/role/profile columns to a users table created by a bare fastapi-users setup"""
    async with engine.begin() as conn:
        existing_columns = await _existing_columns(conn, "users")
        if not existing_columns:
            return

        # column -> (DDL type, default or None)
        required_columns = {
            "organization_id": ("UUID REFERENCES organizations(id) ON DELETE CASCADE", None),
            "role": ("TEXT", "'user'"),
            "display_name": ("VARCHAR", None),
            "created_at": ("TIMESTAMP WITH TIME ZONE", "now()"),
        }

        for column_name, (column_type, default_value) in required_columns.items():
            if column_name in existing_columns:
                logger.debug("%s column already exists in users table", column_name)
                continue

            logger.info("Adding %s column to users table...", column_name)
            if default_value is None:
                await conn.execute(text(f"ALTER TABLE users ADD COLUMN {column_name} {column_type}"))
                continue

            # Add with default, backfill, then make it NOT NULL
            await conn.execute(
                text(f"ALTER TABLE users ADD COLUMN {column_name} {column_type} DEFAULT {default_value}")
            )
            await conn.execute(
                text(f"UPDATE users SET {column_name} = {default_value} WHERE {column_name} IS NULL")
            )
            await conn.execute(text(f"ALTER TABLE users ALTER COLUMN {column_name} SET NOT NULL"))
            logger.info("Successfully added %s column to users table", column_name)


async def add_ledger_link_columns_if_missing(engine: AsyncEngine):
    """Add location_id/assignment_id links to location_history rows written before they existed"""
    async with engine.begin() as conn:
        existing_columns = await _existing_columns(conn, "location_history")
        if not existing_columns:
            return

        links = {
            "location_id": "UUID REFERENCES locations(id) ON DELETE SET NULL",
            "assignment_id": "UUID REFERENCES item_assignments(id) ON DELETE SET NULL",
        }
        for column_name, column_type in links.items():
            if column_name in existing_columns:
                continue
            logger.info("Adding %s column to location_history table...", column_name)
            await conn.execute(text(f"ALTER TABLE location_history ADD COLUMN {column_name} {column_type}"))

        if "location_id" not in existing_columns:
            # Backfill from the free-text label where it names exactly one location of the item's organization
            await conn.execute(
                text("""
                    UPDATE location_history AS h
                    SET location_id = l.id
                    FROM inventory_items AS i, locations AS l
                    WHERE h.item_id = i.id
                      AND l.organization_id = i.organization_id
                      AND h.location_name = l.name
                      AND h.location_id IS NULL
                      AND (
                        SELECT count(*) FROM locations AS l2
                        WHERE l2.organization_id = i.organization_id AND l2.name = l.name
                      ) = 1
                """)
            )


async def run_startup_migrations(engine: AsyncEngine):
    if engine.dialect.name != "postgresql":
        return
    await add_missing_user_columns(engine)
    await add_ledger_link_columns_if_missing(engine)
