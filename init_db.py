import asyncio
import sys

from app.db.base import Base
from app.db.session import engine


async def create_tables(drop: bool = False) -> None:
    async with engine.begin() as conn:
        if drop:
            await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    await engine.dispose()


def main():
    drop = "--drop" in sys.argv[1:]
    try:
        asyncio.run(create_tables(drop))
    except Exception as e:
        print(f"Error creating tables: {e}")
        sys.exit(1)

    print(f"Created tables: {', '.join(sorted(Base.metadata.tables))}")
    sys.exit(0)


if __name__ == "__main__":
    main()
