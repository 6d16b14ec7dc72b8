import json
import logging
import os
from datetime import datetime, timezone
from functools import lru_cache
from pathlib import Path, PurePosixPath
from typing import AsyncIterator, Dict, Optional
import aiofiles
import aiofiles.os
from docportal.utils.config import STORAGE_BACKEND, STORAGE_DIR

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 64 * 1024
VISIBILITY_PRIVATE = "private"
VISIBILITY_PUBLIC = "public"


class StorageError(Exception):
    pass


class ObjectNotFoundError(StorageError):
    def __init__(self, key: str):
        super().__init__(f"Object not found: {key}")
        self.key = key


class InvalidKeyError(StorageError):
    pass


def validate_key(key: str) -> str:
    if not key or not key.strip():
        raise InvalidKeyError("Object key must not be empty")
    path = PurePosixPath(key)
    if path.is_absolute() or key.startswith("\\"):
        raise InvalidKeyError(f"Object key must be relative: {key}")
    if ".." in path.parts:
        raise InvalidKeyError(f"Object key must not contain '..': {key}")
    return key


def _base_metadata(data: bytes, content_type: str, metadata: Optional[Dict[str, str]]) -> dict:
    meta = dict(metadata or {})
    meta.update({
        "size": len(data),
        "content_type": content_type,
        "created_at": datetime.now(timezone.utc).isoformat(),
    })
    return meta


class ObjectStorage:
    """
        Async object store. Keys are relative POSIX paths such as uploads/<id>.pdf and every
        object carries metadata with size, content_type, created_at and the access policy.
    """

    async def put(self, key: str, data: bytes, content_type: str,
                  metadata: Optional[Dict[str, str]] = None) -> None:
        raise NotImplementedError

    async def get(self, key: str) -> bytes:
        raise NotImplementedError

    def stream(self, key: str, chunk_size: int = DEFAULT_CHUNK_SIZE) -> AsyncIterator[bytes]:
        raise NotImplementedError

    async def get_metadata(self, key: str) -> dict:
        raise NotImplementedError

    async def exists(self, key: str) -> bool:
        raise NotImplementedError

    async def delete(self, key: str) -> bool:
        raise NotImplementedError


class MemoryObjectStorage(ObjectStorage):
    def __init__(self):
        self._objects: Dict[str, bytes] = {}
        self._metadata: Dict[str, dict] = {}

    async def put(self, key, data, content_type, metadata=None):
        validate_key(key)
        self._objects[key] = bytes(data)
        self._metadata[key] = _base_metadata(data, content_type, metadata)

    async def get(self, key):
        validate_key(key)
        try:
            return self._objects[key]
        except KeyError:
            raise ObjectNotFoundError(key) from None

    async def stream(self, key, chunk_size=DEFAULT_CHUNK_SIZE):
        data = await self.get(key)
        for start in range(0, len(data), chunk_size):
            yield data[start:start + chunk_size]

    async def get_metadata(self, key):
        validate_key(key)
        if key not in self._metadata:
            raise ObjectNotFoundError(key)
        return dict(self._metadata[key])

    async def exists(self, key):
        validate_key(key)
        return key in self._objects

    async def delete(self, key):
        validate_key(key)
        self._metadata.pop(key, None)
        return self._objects.pop(key, None) is not None

    def clear(self):
        self._objects.clear()
        self._metadata.clear()


class LocalObjectStorage(ObjectStorage):
    """Stores objects as files below ``base_path`` with a JSON metadata sidecar."""

    META_SUFFIX = ".meta.json"

    def __init__(self, base_path: str = STORAGE_DIR):
        self.base_path = Path(base_path).resolve()
        os.makedirs(self.base_path, exist_ok=True)

    def _get_file_path(self, key: str) -> Path:
        path = (self.base_path / validate_key(key)).resolve()
        if self.base_path not in path.parents:
            raise InvalidKeyError(f"Object key escapes storage root: {key}")
        return path

    def _get_metadata_path(self, key: str) -> Path:
        path = self._get_file_path(key)
        return path.with_name(path.name + self.META_SUFFIX)

    async def put(self, key, data, content_type, metadata=None):
        file_path = self._get_file_path(key)
        os.makedirs(file_path.parent, exist_ok=True)
        async with aiofiles.open(file_path, 'wb') as out:
            await out.write(data)
        async with aiofiles.open(self._get_metadata_path(key), 'w') as out:
            await out.write(json.dumps(_base_metadata(data, content_type, metadata)))
        logger.debug("Stored %s (%d bytes)", key, len(data))

    async def get(self, key):
        file_path = self._get_file_path(key)
        if not await aiofiles.os.path.isfile(file_path):
            raise ObjectNotFoundError(key)
        async with aiofiles.open(file_path, 'rb') as f:
            return await f.read()

    async def stream(self, key, chunk_size=DEFAULT_CHUNK_SIZE):
        file_path = self._get_file_path(key)
        if not await aiofiles.os.path.isfile(file_path):
            raise ObjectNotFoundError(key)
        async with aiofiles.open(file_path, 'rb') as f:
            while True:
                chunk = await f.read(chunk_size)
                if not chunk:
                    break
                yield chunk

    async def get_metadata(self, key):
        file_path = self._get_file_path(key)
        if not await aiofiles.os.path.isfile(file_path):
            raise ObjectNotFoundError(key)
        meta_path = self._get_metadata_path(key)
        if not await aiofiles.os.path.isfile(meta_path):
            stat = await aiofiles.os.stat(file_path)
            return {"size": stat.st_size, "content_type": "application/octet-stream"}
        async with aiofiles.open(meta_path, 'r') as f:
            return json.loads(await f.read())

    async def exists(self, key):
        return await aiofiles.os.path.isfile(self._get_file_path(key))

    async def delete(self, key):
        file_path = self._get_file_path(key)
        if not await aiofiles.os.path.isfile(file_path):
            return False
        await aiofiles.os.remove(file_path)
        meta_path = self._get_metadata_path(key)
        if await aiofiles.os.path.isfile(meta_path):
            await aiofiles.os.remove(meta_path)
        logger.debug("Deleted %s", key)
        return True


def acl_metadata(owner: str, visibility: str = VISIBILITY_PRIVATE) -> Dict[str, str]:
    if visibility not in (VISIBILITY_PRIVATE, VISIBILITY_PUBLIC):
        raise ValueError(f"Unknown visibility: {visibility}")
    return {"owner": owner, "visibility": visibility}


def can_access_object(metadata: dict, user_id: str) -> bool:
    if metadata.get("visibility") == VISIBILITY_PUBLIC:
        return True
    return metadata.get("owner") == user_id


def create_storage(backend: str = STORAGE_BACKEND) -> ObjectStorage:
    if backend == "local":
        return LocalObjectStorage(STORAGE_DIR)
    if backend == "memory":
        return MemoryObjectStorage()
    raise ValueError(f"Unknown storage backend: {backend}")


@lru_cache
def get_storage() -> ObjectStorage:
    return create_storage()
