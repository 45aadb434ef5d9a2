"""
File-backed storage.

Each collection lives in memory as an ordered list of documents and is
persisted to ``<data_dir>/<name>.json`` after every mutation. Files hold
MongoDB Extended JSON (via ``bson.json_util``) so datetimes survive a
restart. All queries are linear scans; indexes are accepted as no-ops.

Known gaps, shared with the hosted deployment this backend targets:
    * no cascading deletes (deleting a user leaves their projects)
    * a failed disk write leaves memory ahead of disk until the next write

Documents that Extended JSON cannot encode are rejected before the
in-memory collection changes.
"""

import asyncio
import contextlib
import copy
import logging
import os
import secrets
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from bson import json_util
from bson.json_util import JSONMode, JSONOptions

from ..constants import FILE_CREATED_FIELD, FILE_ID_BYTES, IDENTITY_FIELD, KNOWN_COLLECTIONS
from ..exceptions import DuplicateKeyError, PersistenceError
from ..query import (
    FilterExpression,
    UpdatePlan,
    apply_update,
    index_name,
    sort_documents,
    values_equal,
)
from .base import BackendKind, BaseCollection, StorageBackend, UpdateResult

logger = logging.getLogger(__name__)

JSON_OPTIONS = JSONOptions(json_mode=JSONMode.RELAXED, tz_aware=True, tzinfo=timezone.utc)


def generate_id() -> str:
    """Random 24-character hex identity."""
    return secrets.token_hex(FILE_ID_BYTES)


def utc_now() -> datetime:
    """Current UTC time truncated to milliseconds (BSON datetime precision)."""
    now = datetime.now(timezone.utc)
    return now.replace(microsecond=now.microsecond // 1000 * 1000)


class FileCollection(BaseCollection):
    """Collection handle backed by the in-memory list of a FileBackend."""

    _backend: "FileBackend"

    @property
    def _documents(self) -> list[dict[str, Any]]:
        return self._backend._documents(self.name)

    def _check_encodable(self, document: dict[str, Any]) -> None:
        try:
            json_util.dumps(document, json_options=JSON_OPTIONS)
        except (TypeError, ValueError) as e:
            raise PersistenceError(
                f"Document cannot be stored as Extended JSON: {e}",
                path=str(self._backend.path_for(self.name)),
                collection=self.name,
            ) from e

    def _first_index(self, expr: FilterExpression) -> int | None:
        for index, document in enumerate(self._documents):
            if expr.matches(document):
                return index
        return None

    async def _insert_one(self, document: dict[str, Any]) -> Any:
        document = copy.deepcopy(document)
        documents = self._documents

        identity = document.pop(IDENTITY_FIELD, None)
        if identity is None:
            identity = generate_id()
        elif any(values_equal(doc.get(IDENTITY_FIELD), identity) for doc in documents):
            raise DuplicateKeyError(
                f"Duplicate _id in '{self.name}'",
                context={"collection": self.name, "_id": identity},
            )

        document = {IDENTITY_FIELD: identity, **document}
        document.setdefault(FILE_CREATED_FIELD, utc_now())
        self._check_encodable(document)

        documents.append(document)
        await self._backend.persist(self.name)
        return identity

    async def _find_one(self, expr: FilterExpression) -> dict[str, Any] | None:
        index = self._first_index(expr)
        if index is None:
            return None
        return copy.deepcopy(self._documents[index])

    async def _find(
        self,
        expr: FilterExpression,
        sort: list[tuple[str, int]],
        skip: int,
        limit: int | None,
    ) -> list[dict[str, Any]]:
        matches = [doc for doc in self._documents if expr.matches(doc)]
        if sort:
            matches = sort_documents(matches, sort)
        end = skip + limit if limit is not None else None
        return copy.deepcopy(matches[skip:end])

    async def _update_one(self, expr: FilterExpression, plan: UpdatePlan) -> UpdateResult:
        index = self._first_index(expr)
        if index is None:
            return UpdateResult(matched_count=0, modified_count=0)

        # Applied to a copy so a rejected operator leaves the stored document intact
        candidate = copy.deepcopy(self._documents[index])
        if not apply_update(candidate, plan):
            return UpdateResult(matched_count=1, modified_count=0)
        self._check_encodable(candidate)

        self._documents[index] = candidate
        await self._backend.persist(self.name)
        return UpdateResult(matched_count=1, modified_count=1)

    async def _delete(self, expr: FilterExpression, many: bool) -> int:
        documents = self._documents
        if many:
            kept = [doc for doc in documents if not expr.matches(doc)]
            deleted = len(documents) - len(kept)
            documents[:] = kept
        else:
            index = self._first_index(expr)
            deleted = 0
            if index is not None:
                del documents[index]
                deleted = 1

        if deleted:
            await self._backend.persist(self.name)
        return deleted

    async def _count(self, expr: FilterExpression) -> int:
        return sum(1 for doc in self._documents if expr.matches(doc))

    async def _create_index(
        self, keys: list[tuple[str, int]], unique: bool, sparse: bool, name: str | None
    ) -> str:
        name = name or index_name(keys)
        logger.debug(f"Index '{name}' on '{self.name}' accepted (file backend scans in memory)")
        return name


class FileBackend(StorageBackend):
    """
    JSON-file storage for deployments without a database server.

    Args:
        data_dir: Directory holding one ``<collection>.json`` per collection
    """

    kind = BackendKind.FILE

    def __init__(self, data_dir: str | Path):
        super().__init__()
        self.data_dir = Path(data_dir)
        self._data: dict[str, list[dict[str, Any]]] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def _make_collection(self, name: str) -> FileCollection:
        return FileCollection(self, name)

    def _documents(self, name: str) -> list[dict[str, Any]]:
        return self._data.setdefault(name, [])

    def path_for(self, name: str) -> Path:
        return self.data_dir / f"{name}.json"

    async def initialize(self) -> None:
        """
        Create the data directory and load every collection.

        Known collections without a file are created empty on disk; other
        ``*.json`` files already in the directory are loaded as well.

        Raises:
            PersistenceError: If the directory cannot be created or a file
                is unreadable or not a JSON list
        """
        if self._initialized:
            return

        try:
            await asyncio.to_thread(self.data_dir.mkdir, parents=True, exist_ok=True)
        except OSError as e:
            raise PersistenceError(
                f"Cannot create data directory: {e}", path=str(self.data_dir)
            ) from e
        logger.info(f"File database directory: {self.data_dir}")

        existing = await asyncio.to_thread(self._existing_collections)
        names = list(KNOWN_COLLECTIONS) + [n for n in existing if n not in KNOWN_COLLECTIONS]

        for name in names:
            documents = await self._load(name)
            if documents is None:
                self._data[name] = []
                await self.persist(name)
                logger.info(f"Created new collection: {name}")
            else:
                self._data[name] = documents
                logger.info(f"Loaded collection: {name} ({len(documents)} documents)")

        self._initialized = True
        logger.info("File-based database initialized successfully")

    def _existing_collections(self) -> list[str]:
        return sorted(p.stem for p in self.data_dir.glob("*.json") if not p.stem.startswith("."))

    async def _load(self, name: str) -> list[dict[str, Any]] | None:
        path = self.path_for(name)
        try:
            text = await asyncio.to_thread(path.read_text, encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as e:
            raise PersistenceError(
                f"Cannot read collection file: {e}", path=str(path), collection=name
            ) from e

        try:
            documents = json_util.loads(text, json_options=JSON_OPTIONS)
        except ValueError as e:
            raise PersistenceError(
                f"Collection file is not valid JSON: {e}", path=str(path), collection=name
            ) from e
        if not isinstance(documents, list) or not all(isinstance(d, dict) for d in documents):
            raise PersistenceError(
                "Collection file must contain a JSON list of documents",
                path=str(path),
                collection=name,
            )
        return documents

    async def persist(self, name: str) -> None:
        """
        Write a collection to disk.

        Writes of one collection are serialized, and each write snapshots
        the in-memory state when it starts, so the last completed write
        always reflects every mutation before it.

        Raises:
            PersistenceError: If serialization or the write fails
        """
        lock = self._locks.setdefault(name, asyncio.Lock())
        path = self.path_for(name)
        async with lock:
            try:
                payload = json_util.dumps(self._documents(name), json_options=JSON_OPTIONS, indent=2)
                await asyncio.to_thread(self._write_atomic, path, payload)
            except (OSError, TypeError, ValueError) as e:
                logger.error(f"Failed to persist collection '{name}': {e}")
                raise PersistenceError(
                    f"Failed to persist collection: {e}", path=str(path), collection=name
                ) from e

    @staticmethod
    def _write_atomic(path: Path, payload: str) -> None:
        handle = tempfile.NamedTemporaryFile(
            "w", encoding="utf-8", dir=path.parent, prefix=f".{path.stem}.", suffix=".tmp", delete=False
        )
        try:
            with handle:
                handle.write(payload)
            os.replace(handle.name, path)
        except BaseException:
            with contextlib.suppress(OSError):
                os.unlink(handle.name)
            raise

    async def close(self) -> None:
        # Let in-flight writes finish before dropping state
        for lock in list(self._locks.values()):
            async with lock:
                pass
        self._data.clear()
        self._collections.clear()
        self._locks.clear()
        self._initialized = False
        logger.info("File database connection closed")

    async def ping(self) -> None:
        """Check that the data directory is still writable."""
        self.ensure_initialized()
        writable = await asyncio.to_thread(os.access, self.data_dir, os.W_OK)
        if not writable:
            raise PersistenceError("Data directory is not writable", path=str(self.data_dir))
