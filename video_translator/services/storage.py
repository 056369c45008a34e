"""Filesystem-backed object storage."""

import logging
import os
import time
import uuid
from datetime import datetime
from pathlib import Path
from typing import Optional
from urllib.parse import urlencode

from .base import BaseObjectStorage

logger = logging.getLogger(__name__)


class LocalObjectStorage(BaseObjectStorage):
    """Stores objects as files below a root directory."""

    def __init__(self, root: str):
        self.root = Path(root).resolve()
        self.root.mkdir(parents=True, exist_ok=True)

    def put(self, data: bytes, key: str) -> str:
        path = self._path_for(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_name(f".{path.name}.{uuid.uuid4().hex}.tmp")
        with open(tmp_path, 'wb') as f:
            f.write(data)
        os.replace(tmp_path, path)
        logger.debug(f"Stored {len(data)} bytes at {key}")
        return key

    def put_file(self, path: str, key: str) -> str:
        """Store a local file under a key without reading it into memory."""
        target = self._path_for(key)
        target.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = target.with_name(f".{target.name}.{uuid.uuid4().hex}.tmp")
        with open(path, 'rb') as src, open(tmp_path, 'wb') as dst:
            while True:
                block = src.read(1024 * 1024)
                if not block:
                    break
                dst.write(block)
        os.replace(tmp_path, target)
        logger.debug(f"Stored {path} at {key}")
        return key

    def get(self, key: str) -> bytes:
        path = self._path_for(key)
        if not path.is_file():
            raise KeyError(key)
        return path.read_bytes()

    def exists(self, key: str) -> bool:
        return self._path_for(key).is_file()

    def size(self, key: str) -> int:
        path = self._path_for(key)
        if not path.is_file():
            raise KeyError(key)
        return path.stat().st_size

    def local_path(self, key: str) -> str:
        """Filesystem path backing a key."""
        return str(self._path_for(key))

    def presigned_url(self, key: str, ttl_seconds: int) -> str:
        """Return a file:// URL carrying an expiry timestamp.

        Raises:
            KeyError: If nothing is stored under the key
        """
        path = self._path_for(key)
        if not path.is_file():
            raise KeyError(key)
        expires = int(time.time()) + max(0, int(ttl_seconds))
        return f"{path.as_uri()}?{urlencode({'expires': expires})}"

    @staticmethod
    def generate_key(filename: str, prefix: str = "uploads", now: Optional[datetime] = None) -> str:
        """Build a unique key of the form ``<prefix>/<timestamp>/<uuid>_<name>``."""
        name = os.path.basename(filename) or "file"
        stamp = (now or datetime.now()).strftime('%Y%m%d%H%M%S')
        return f"{prefix.strip('/')}/{stamp}/{uuid.uuid4().hex}_{name}"

    def _path_for(self, key: str) -> Path:
        if not key or key.startswith('/'):
            raise ValueError(f"Invalid storage key: {key!r}")
        path = (self.root / key).resolve()
        if path != self.root and self.root not in path.parents:
            raise ValueError(f"Storage key escapes the storage root: {key!r}")
        return path
