"""Key-value CRUD operations."""
from typing import Iterable, Optional

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from tasksync.models.kv import KeyValueEntry


class CRUDKeyValue:
    """CRUD operations for KeyValueEntry.

    Methods never commit; callers group writes into one transaction.
    """

    async def get(self, db: AsyncSession, *, key: str) -> Optional[str]:
        """Get the value stored under a key."""
        result = await db.execute(select(KeyValueEntry.value).where(KeyValueEntry.key == key))
        return result.scalar_one_or_none()

    async def set(self, db: AsyncSession, *, key: str, value: str) -> None:
        """Insert or overwrite a key."""
        await db.merge(KeyValueEntry(key=key, value=value))

    async def delete(self, db: AsyncSession, *, keys: Iterable[str]) -> int:
        """Delete keys, returning how many existed."""
        keys = list(keys)
        if not keys:
            return 0
        result = await db.execute(delete(KeyValueEntry).where(KeyValueEntry.key.in_(keys)))
        return result.rowcount or 0

    async def total_size(self, db: AsyncSession, *, exclude: Iterable[str] = ()) -> int:
        """Total characters stored across the namespace, keys included."""
        query = select(
            func.coalesce(func.sum(func.length(KeyValueEntry.key) + func.length(KeyValueEntry.value)), 0)
        )
        exclude = list(exclude)
        if exclude:
            query = query.where(KeyValueEntry.key.not_in(exclude))
        result = await db.execute(query)
        return int(result.scalar_one() or 0)


kv = CRUDKeyValue()
