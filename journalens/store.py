#!/usr/bin/env python3
"""
Durable key-object store.

A per-user private area holding named JSON blobs. The cache and the
report archive only talk to the abstract `DocumentStore`; `JsonFileStore`
keeps each user's objects as JSON files under one directory.
"""

import asyncio
import json
import re
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, List

from pydantic import BaseModel


USER_SLUG_RE = re.compile(r"[^a-z0-9._-]+")
NAME_RE = re.compile(r"^[A-Za-z0-9._-]+$")


class StoreError(Exception):
    """Listing, reading or writing the durable store failed."""


class StoredObject(BaseModel):
    id: str
    name: str


class DocumentStore(ABC):
    """Named JSON blobs scoped to one authenticated user."""

    @abstractmethod
    async def list(self, prefix: str) -> List[StoredObject]:
        """List objects whose name starts with `prefix`."""

    @abstractmethod
    async def get(self, object_id: str) -> Any:
        """Return the decoded JSON blob stored under `object_id`."""

    @abstractmethod
    async def create(self, name: str, blob: Any) -> str:
        """Create a new object and return its id."""

    @abstractmethod
    async def update(self, object_id: str, blob: Any) -> None:
        """Replace the blob of an existing object."""

    @abstractmethod
    async def delete(self, object_id: str) -> None:
        """Delete an object."""


def user_slug(user_id: str) -> str:
    """Filesystem-safe directory name for one user id."""
    text = (user_id or "").strip().lower()
    text = USER_SLUG_RE.sub("-", text).strip("-.")
    return text or "anonymous"


class JsonFileStore(DocumentStore):
    """
    One directory per user, one JSON file per object.

    Object ids are the file names. `create` refuses to overwrite an
    existing file, so racing creators cannot silently clobber each other.
    File I/O runs in worker threads so the event loop keeps serving
    concurrent summaries.
    """

    def __init__(self, root: Path, user_id: str):
        self.root = Path(root)
        self.user_dir = self.root / user_slug(user_id)

    def _path(self, object_id: str) -> Path:
        if not NAME_RE.match(object_id):
            raise StoreError(f"Invalid object name: {object_id!r}")
        return self.user_dir / object_id

    def _list_sync(self, prefix: str) -> List[StoredObject]:
        if not self.user_dir.exists():
            return []
        try:
            names = sorted(
                p.name for p in self.user_dir.iterdir()
                if p.is_file() and p.name.startswith(prefix)
            )
        except OSError as e:
            raise StoreError(f"Could not list {self.user_dir}: {e}") from e
        return [StoredObject(id=name, name=name) for name in names]

    def _get_sync(self, path: Path) -> Any:
        try:
            with open(path, encoding="utf-8") as f:
                return json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise StoreError(f"Could not read {path.name}: {e}") from e

    def _create_sync(self, path: Path, blob: Any) -> None:
        # Serialize first so a bad blob never leaves a half-written file
        try:
            text = json.dumps(blob, ensure_ascii=False, indent=2)
        except (TypeError, ValueError) as e:
            raise StoreError(f"Could not encode {path.name}: {e}") from e
        try:
            self.user_dir.mkdir(parents=True, exist_ok=True)
            with open(path, "x", encoding="utf-8") as f:
                f.write(text)
        except OSError as e:
            raise StoreError(f"Could not create {path.name}: {e}") from e

    def _update_sync(self, path: Path, blob: Any) -> None:
        if not path.exists():
            raise StoreError(f"No such object: {path.name}")
        # Write to a sibling first so readers never see half a file
        tmp_path = path.with_name(f".{path.name}.tmp")
        try:
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(blob, f, ensure_ascii=False, indent=2)
            tmp_path.replace(path)
        except (OSError, TypeError, ValueError) as e:
            raise StoreError(f"Could not update {path.name}: {e}") from e

    def _delete_sync(self, path: Path) -> None:
        try:
            path.unlink()
        except OSError as e:
            raise StoreError(f"Could not delete {path.name}: {e}") from e

    async def list(self, prefix: str) -> List[StoredObject]:
        return await asyncio.to_thread(self._list_sync, prefix)

    async def get(self, object_id: str) -> Any:
        return await asyncio.to_thread(self._get_sync, self._path(object_id))

    async def create(self, name: str, blob: Any) -> str:
        await asyncio.to_thread(self._create_sync, self._path(name), blob)
        return name

    async def update(self, object_id: str, blob: Any) -> None:
        await asyncio.to_thread(self._update_sync, self._path(object_id), blob)

    async def delete(self, object_id: str) -> None:
        await asyncio.to_thread(self._delete_sync, self._path(object_id))
