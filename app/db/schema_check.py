import asyncio
from typing import Dict, List

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine

import app.core.models  # noqa: F401  (registers every table on Base.metadata)
from app.db.session import Base, engine


CREATE_SCHEMA_SQL: Dict[str, str] = {
    "core": "CREATE SCHEMA IF NOT EXISTS core;",
    "finance": "CREATE SCHEMA IF NOT EXISTS finance;",
    "payroll": "CREATE SCHEMA IF NOT EXISTS payroll;",
    "leave": "CREATE SCHEMA IF NOT EXISTS leave;",
}


async def ensure_tables(db_engine: AsyncEngine) -> List[str]:
    """
    Ensure that all required schemas/tables exist in the connected database.
    Missing tables (with their unique constraints and indexes) are created;
    existing ones are left untouched. Returns the names of created tables.
    """
    async with db_engine.begin() as conn:
        for ddl in CREATE_SCHEMA_SQL.values():
            await conn.execute(text(ddl))

        missing: List[str] = []
        for table in Base.metadata.sorted_tables:
            full_name = f"{table.schema}.{table.name}"
            result = await conn.execute(text("SELECT to_regclass(:relname)"), {"relname": full_name})
            if result.scalar() is None:
                missing.append(full_name)

        await conn.run_sync(Base.metadata.create_all, checkfirst=True)

    if missing:
        print("Created missing tables: " + ", ".join(missing))
    else:
        print("All billing, payroll and leave tables already exist in the database.")
    return missing


async def main() -> None:
    await ensure_tables(engine)


if __name__ == "__main__":
    asyncio.run(main())
