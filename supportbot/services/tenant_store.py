"""Persistent key-value access to tenant configuration and channel mappings.

Sessions are synchronous SQLAlchemy sessions; every public coroutine runs its
work in a worker thread so the event loop never blocks on the database.
"""

import asyncio
from typing import Any, Callable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from supportbot.logging_config import get_logger
from supportbot.models import ChannelMapping, TenantConfigRecord

logger = get_logger("tenant_store")


class StoreError(Exception):
    """Raised when the persistent store cannot complete a read or write."""


class TenantStore:
    def __init__(self, session_factory: Callable[[], Session]):
        self._session_factory = session_factory

    def _run(self, operation: str, fn):
        db = self._session_factory()
        try:
            result = fn(db)
            db.commit()
            return result
        except SQLAlchemyError as exc:
            db.rollback()
            raise StoreError(f"{operation} failed: {exc}") from exc
        finally:
            db.close()

    async def get_tenant_config(self, tenant_id: str) -> Any:
        """Raw stored JSON for the tenant, or None. Shape is validated by the caller."""

        def _get(db: Session) -> Any:
            record = db.get(TenantConfigRecord, tenant_id)
            return record.config if record is not None else None

        return await asyncio.to_thread(self._run, "get_tenant_config", _get)

    async def put_tenant_config(self, tenant_id: str, config: dict) -> None:
        def _put(db: Session) -> None:
            db.merge(TenantConfigRecord(tenant_id=tenant_id, config=config))

        await asyncio.to_thread(self._run, "put_tenant_config", _put)

    async def get_mapping(self, channel_group_id: str) -> Optional[str]:
        def _get(db: Session) -> Optional[str]:
            record = db.get(ChannelMapping, channel_group_id)
            return record.tenant_id if record else None

        return await asyncio.to_thread(self._run, "get_mapping", _get)

    async def put_mapping(self, channel_group_id: str, tenant_id: str) -> None:
        def _put(db: Session) -> None:
            db.merge(ChannelMapping(channel_group_id=channel_group_id, tenant_id=tenant_id))

        await asyncio.to_thread(self._run, "put_mapping", _put)

    async def list_mappings(self) -> list[tuple[str, str]]:
        def _list(db: Session) -> list[tuple[str, str]]:
            rows = db.query(ChannelMapping.channel_group_id, ChannelMapping.tenant_id).all()
            return [(row[0], row[1]) for row in rows]

        return await asyncio.to_thread(self._run, "list_mappings", _list)
