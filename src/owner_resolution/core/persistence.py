"""
JSON document storage used for run results and override rules
"""
import asyncio
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Protocol, Union

from owner_resolution.core.errors import DocumentNotFoundError

logger = logging.getLogger(__name__)


class JsonStore(Protocol):
    async def load(self, doc_id: str) -> Any: ...

    async def save(self, doc_id: str, document: Any) -> bool: ...


class JsonFileStore:
    """
    Store each document as <directory>/<doc_id>.json
    """

    def __init__(self, directory: Union[str, Path]):
        self.directory = Path(directory)

    def _path(self, doc_id: str) -> Path:
        if not doc_id or "/" in doc_id or "\\" in doc_id or os.sep in doc_id or doc_id in (".", ".."):
            raise ValueError(f"Invalid document id: {doc_id!r}")
        return self.directory / f"{doc_id}.json"

    def _read(self, path: Path) -> Any:
        try:
            with open(path, "r", encoding="utf-8") as f:
                return json.load(f)
        except FileNotFoundError as e:
            raise DocumentNotFoundError(f"No document {path.stem!r} in {self.directory}") from e

    def _write(self, path: Path, document: Any) -> bool:
        self.directory.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self.directory, prefix=f".{path.stem}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(document, f, indent=2)
            os.replace(tmp_name, path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise
        return True

    async def load(self, doc_id: str) -> Any:
        path = self._path(doc_id)
        return await asyncio.to_thread(self._read, path)

    async def save(self, doc_id: str, document: Any) -> bool:
        path = self._path(doc_id)
        saved = await asyncio.to_thread(self._write, path, document)
        logger.debug("Saved document %s", path)
        return saved
