"""Owner click statistics on the `users` collection."""

from __future__ import annotations

from bson import ObjectId
from pymongo.asynchronous.collection import AsyncCollection
from pymongo.errors import PyMongoError

from errors import StorageError


class UserRepository:
    def __init__(self, collection: AsyncCollection) -> None:
        self._col = collection

    async def add_clicks(self, owner_id: ObjectId, count: int = 1) -> None:
        try:
            await self._col.update_one(
                {"_id": owner_id}, {"$inc": {"stats.total_clicks": count}}
            )
        except PyMongoError as e:
            raise StorageError("failed to update owner statistics") from e
