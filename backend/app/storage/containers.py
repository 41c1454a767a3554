from __future__ import annotations

import copy
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Protocol, runtime_checkable
from uuid import uuid4

from sqlalchemy import delete, select, text, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..db.models import DocumentItem

Document = dict[str, Any]


class ContainerError(Exception):
    """Raised when the backing store fails."""


class ItemNotFound(ContainerError):
    pass


class ItemConflict(ContainerError):
    pass


class PreconditionFailed(ContainerError):
    pass


def _new_etag() -> str:
    return uuid4().hex


@runtime_checkable
class DocumentContainer(Protocol):
    """Item-level access to one logical container of JSON documents."""

    name: str
    partition_key_field: str

    async def create_item(self, item: Document) -> Document: ...

    async def query_items(self, *, partition_key: str | None = None) -> list[Document]: ...

    async def read_item(self, item_id: str, partition_key: str) -> Document | None: ...

    async def replace_item(self, item: Document, *, if_match: str | None = None) -> Document: ...

    async def delete_item(self, item_id: str, partition_key: str) -> None: ...

    async def healthcheck(self) -> None: ...


class InMemoryDocumentContainer:
    """Insertion-ordered container used in mock mode and tests."""

    def __init__(self, name: str, *, partition_key_field: str = "userId") -> None:
        self.name = name
        self.partition_key_field = partition_key_field
        self._items: dict[str, Document] = {}

    async def create_item(self, item: Document) -> Document:
        item_id = item["id"]
        if item_id in self._items:
            raise ItemConflict(f"item {item_id} already exists")
        document = copy.deepcopy(item)
        document["etag"] = _new_etag()
        self._items[item_id] = document
        return copy.deepcopy(document)

    async def query_items(self, *, partition_key: str | None = None) -> list[Document]:
        return [
            copy.deepcopy(document)
            for document in self._items.values()
            if partition_key is None or document.get(self.partition_key_field) == partition_key
        ]

    async def read_item(self, item_id: str, partition_key: str) -> Document | None:
        document = self._items.get(item_id)
        if document is None or document.get(self.partition_key_field) != partition_key:
            return None
        return copy.deepcopy(document)

    async def replace_item(self, item: Document, *, if_match: str | None = None) -> Document:
        item_id = item["id"]
        current = self._items.get(item_id)
        if current is None or current.get(self.partition_key_field) != item.get(
            self.partition_key_field
        ):
            raise ItemNotFound(item_id)
        if if_match is not None and current.get("etag") != if_match:
            raise PreconditionFailed(item_id)
        document = copy.deepcopy(item)
        document["etag"] = _new_etag()
        self._items[item_id] = document
        return copy.deepcopy(document)

    async def delete_item(self, item_id: str, partition_key: str) -> None:
        if await self.read_item(item_id, partition_key) is None:
            raise ItemNotFound(item_id)
        del self._items[item_id]

    async def healthcheck(self) -> None:
        return None


class SqlDocumentContainer:
    """Container persisted as JSON rows in the ``document_items`` table."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        name: str,
        *,
        partition_key_field: str = "userId",
    ) -> None:
        self._session_factory = session_factory
        self.name = name
        self.partition_key_field = partition_key_field

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[AsyncSession]:
        try:
            async with self._session_factory() as session:
                yield session
        except IntegrityError as exc:
            raise ItemConflict(str(exc.orig)) from exc
        except SQLAlchemyError as exc:
            raise ContainerError(str(exc)) from exc

    def _scope(self, item_id: str, partition_key: str):
        return (
            DocumentItem.container == self.name,
            DocumentItem.item_id == item_id,
            DocumentItem.partition_key == partition_key,
        )

    async def healthcheck(self) -> None:
        async with self._session() as session:
            await session.execute(text("SELECT 1"))

    async def create_item(self, item: Document) -> Document:
        document = copy.deepcopy(item)
        document["etag"] = _new_etag()
        async with self._session() as session:
            session.add(
                DocumentItem(
                    container=self.name,
                    item_id=document["id"],
                    partition_key=document[self.partition_key_field],
                    etag=document["etag"],
                    body=document,
                )
            )
            await session.commit()
        return document

    async def query_items(self, *, partition_key: str | None = None) -> list[Document]:
        stmt = select(DocumentItem.body).where(DocumentItem.container == self.name)
        if partition_key is not None:
            stmt = stmt.where(DocumentItem.partition_key == partition_key)
        async with self._session() as session:
            result = await session.execute(stmt.order_by(DocumentItem.id))
            return [dict(body) for body in result.scalars().all()]

    async def read_item(self, item_id: str, partition_key: str) -> Document | None:
        async with self._session() as session:
            body = await session.scalar(
                select(DocumentItem.body).where(*self._scope(item_id, partition_key))
            )
            return dict(body) if body is not None else None

    async def replace_item(self, item: Document, *, if_match: str | None = None) -> Document:
        document = copy.deepcopy(item)
        document["etag"] = _new_etag()
        scope = self._scope(document["id"], document[self.partition_key_field])
        stmt = update(DocumentItem).where(*scope)
        if if_match is not None:
            stmt = stmt.where(DocumentItem.etag == if_match)
        stmt = stmt.values(body=document, etag=document["etag"], updated_at=datetime.utcnow())

        async with self._session() as session:
            result = await session.execute(stmt)
            if result.rowcount == 0:
                exists = await session.scalar(select(DocumentItem.id).where(*scope))
                await session.rollback()
                if exists is None:
                    raise ItemNotFound(document["id"])
                raise PreconditionFailed(document["id"])
            await session.commit()
        return document

    async def delete_item(self, item_id: str, partition_key: str) -> None:
        async with self._session() as session:
            result = await session.execute(
                delete(DocumentItem).where(*self._scope(item_id, partition_key))
            )
            if result.rowcount == 0:
                await session.rollback()
                raise ItemNotFound(item_id)
            await session.commit()


__all__ = [
    "ContainerError",
    "Document",
    "DocumentContainer",
    "InMemoryDocumentContainer",
    "ItemConflict",
    "ItemNotFound",
    "PreconditionFailed",
    "SqlDocumentContainer",
]
