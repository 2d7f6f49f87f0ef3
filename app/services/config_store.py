"""Persistent per-user catalog configuration."""

from __future__ import annotations

import logging
import uuid
from typing import Callable, Literal

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..db_models import UserConfigRecord
from ..models import Source, UserCatalogConfig

logger = logging.getLogger(__name__)

ChangeListener = Callable[[str], None]
Direction = Literal["up", "down"]


class UserNotFoundError(KeyError):
    """Raised when an operation targets a user that was never created."""


class ConfigStore:
    """Load and mutate :class:`UserCatalogConfig` records.

    Every successful mutation notifies the registered change listeners with
    the user id so derived caches can be invalidated.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory
        self._listeners: list[ChangeListener] = []

    def add_listener(self, listener: ChangeListener) -> None:
        self._listeners.append(listener)

    def _notify(self, user_id: str) -> None:
        for listener in self._listeners:
            listener(user_id)

    @staticmethod
    def generate_user_id() -> str:
        return str(uuid.uuid4())

    async def _get_record(
        self, session: AsyncSession, user_id: str
    ) -> UserConfigRecord | None:
        result = await session.execute(
            select(UserConfigRecord).where(UserConfigRecord.user_id == user_id)
        )
        return result.scalar_one_or_none()

    async def user_exists(self, user_id: str) -> bool:
        async with self._session_factory() as session:
            return await self._get_record(session, user_id) is not None

    async def list_users(self) -> list[str]:
        async with self._session_factory() as session:
            result = await session.execute(select(UserConfigRecord.user_id))
            return list(result.scalars())

    async def create_user(self, user_id: str | None = None) -> str:
        """Create an empty configuration and return its user id."""

        resolved = user_id or self.generate_user_id()
        async with self._session_factory() as session:
            if await self._get_record(session, resolved) is None:
                session.add(
                    UserConfigRecord(
                        user_id=resolved, config=UserCatalogConfig().to_payload()
                    )
                )
                await session.commit()
                logger.info("Created configuration for user %s", resolved)
        return resolved

    async def get_config(self, user_id: str) -> UserCatalogConfig:
        """Return the user's configuration; unknown users get an empty one.

        Documents stored without an explicit display order are rewritten with
        the order they were loaded in.
        """

        async with self._session_factory() as session:
            record = await self._get_record(session, user_id)
            if record is None:
                return UserCatalogConfig()
            stored = record.config or {}
            config = UserCatalogConfig.from_payload(stored)
            if stored.get("catalogs") and not stored.get("catalogOrder"):
                logger.debug("Initializing catalog order for user %s", user_id)
                record.config = config.to_payload()
                await session.commit()
            return config

    async def save_config(self, user_id: str, config: UserCatalogConfig) -> bool:
        try:
            async with self._session_factory() as session:
                record = await self._get_record(session, user_id)
                if record is None:
                    record = UserConfigRecord(user_id=user_id)
                    session.add(record)
                record.config = config.to_payload()
                await session.commit()
        except SQLAlchemyError:
            logger.exception("Failed to save configuration for user %s", user_id)
            return False
        self._notify(user_id)
        return True

    async def _mutate(
        self,
        user_id: str,
        mutation: Callable[[UserCatalogConfig], bool | None],
    ) -> bool:
        if not await self.user_exists(user_id):
            raise UserNotFoundError(user_id)
        config = await self.get_config(user_id)
        if not mutation(config):
            return False
        return await self.save_config(user_id, config)

    async def add_source(self, user_id: str, source: Source) -> bool:
        """Append ``source`` or replace an existing source with the same id."""

        def _apply(config: UserCatalogConfig) -> bool:
            created = config.upsert(source)
            logger.info(
                "%s source %s for user %s",
                "Added" if created else "Updated",
                source.id,
                user_id,
            )
            return True

        return await self._mutate(user_id, _apply)

    async def remove_source(self, user_id: str, source_id: str) -> bool:
        return await self._mutate(user_id, lambda config: config.remove(source_id))

    async def move_source(self, user_id: str, source_id: str, direction: Direction) -> bool:
        offset = -1 if direction == "up" else 1
        return await self._mutate(user_id, lambda config: config.move(source_id, offset))

    async def rename_source(self, user_id: str, source_id: str, name: str | None) -> bool:
        return await self._mutate(user_id, lambda config: config.rename(source_id, name))

    async def toggle_randomize(self, user_id: str, source_id: str) -> bool:
        return await self._mutate(
            user_id, lambda config: config.toggle_randomized(source_id) is not None
        )

    async def _save_key(self, user_id: str, column: str, api_key: str | None) -> bool:
        cleaned = (api_key or "").strip() or None
        try:
            async with self._session_factory() as session:
                record = await self._get_record(session, user_id)
                if record is None:
                    raise UserNotFoundError(user_id)
                setattr(record, column, cleaned)
                await session.commit()
        except SQLAlchemyError:
            logger.exception("Failed to save %s for user %s", column, user_id)
            return False
        self._notify(user_id)
        return True

    async def _load_key(self, user_id: str, column: str) -> str | None:
        async with self._session_factory() as session:
            record = await self._get_record(session, user_id)
            if record is None:
                return None
            return getattr(record, column)

    async def save_provider_api_key(self, user_id: str, api_key: str | None) -> bool:
        return await self._save_key(user_id, "mdblist_api_key", api_key)

    async def load_provider_api_key(self, user_id: str) -> str | None:
        return await self._load_key(user_id, "mdblist_api_key")

    async def save_poster_api_key(self, user_id: str, api_key: str | None) -> bool:
        return await self._save_key(user_id, "rpdb_api_key", api_key)

    async def load_poster_api_key(self, user_id: str) -> str | None:
        return await self._load_key(user_id, "rpdb_api_key")


__all__ = ["ConfigStore", "UserNotFoundError", "Direction", "ChangeListener"]
