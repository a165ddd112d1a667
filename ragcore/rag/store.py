"""Local vector store for passage embeddings.

Handles:
- Index creation, reset and lifecycle (open/close)
- Record insertion with id generation and norm computation
- Full listing for ranking and inspection
- Persistence as a single versioned JSON file

The whole index is one JSON document, ``index.json``:

    {"version": 1, "items": [{"id": ..., "vector": [...], "norm": ..., "metadata": {...}}]}

Every write goes to a temporary file that then replaces ``index.json``, so a
reader sees either the previous generation or the next one, never a mix.
"""
import asyncio
import json
import math
import os
import tempfile
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence
import structlog

from ragcore import config
from ragcore.errors import StoreError
from ragcore.rag.ranker import vector_norm

logger = structlog.get_logger()

INDEX_FILENAME = "index.json"


@dataclass
class IndexRecord:
    """One stored passage embedding."""

    id: str
    vector: List[float]
    norm: float
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def text(self) -> Optional[str]:
        value = self.metadata.get("text")
        return value if isinstance(value, str) else None

    def to_dict(self, include_vector: bool = True) -> Dict[str, Any]:
        data = {"id": self.id, "norm": self.norm, "metadata": dict(self.metadata)}
        if include_vector:
            data["vector"] = list(self.vector)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "IndexRecord":
        """Build a record from its JSON form.

        Raises:
            KeyError, TypeError, ValueError: If the data is malformed
        """
        vector = [float(v) for v in data["vector"]]
        metadata = data.get("metadata") or {}
        if not isinstance(metadata, dict):
            raise TypeError("metadata must be an object")
        return cls(
            id=str(data["id"]),
            vector=vector,
            norm=float(data["norm"]),
            metadata=dict(metadata),
        )

    def copy(self) -> "IndexRecord":
        return IndexRecord(
            id=self.id,
            vector=list(self.vector),
            norm=self.norm,
            metadata=dict(self.metadata),
        )


class VectorStore:
    """Append-only collection of IndexRecords.

    Subclasses decide where a generation of records is kept by implementing
    ``_read`` and ``_write``. All mutations are serialized through one
    ``asyncio.Lock``; an insert or reset either fully lands or leaves the
    previous generation in place. The hooks run in the default executor while
    the lock is held, so file I/O never blocks the event loop.
    """

    def __init__(self, schema_version: int = None):
        self.schema_version = (
            config.INDEX_SCHEMA_VERSION if schema_version is None else schema_version
        )
        self._lock = asyncio.Lock()
        self._records: Optional[List[IndexRecord]] = None
        self._is_open = False

    # Persistence hooks

    def _read(self) -> Optional[List[IndexRecord]]:
        """Return the stored generation, or None if no index exists."""
        raise NotImplementedError

    def _write(self, records: List[IndexRecord]) -> None:
        """Atomically replace the stored generation."""
        raise NotImplementedError

    # Lifecycle

    async def open(self) -> None:
        """Load the existing index, if any.

        Raises:
            StoreError: If the stored index cannot be read
        """
        async with self._lock:
            if self._is_open:
                return
            self._records = await self._guarded("open", self._read)
            self._is_open = True

        logger.info(
            "vector_store_opened",
            store=type(self).__name__,
            index_created=self._records is not None,
            record_count=len(self._records or []),
        )

    async def close(self) -> None:
        async with self._lock:
            self._records = None
            self._is_open = False
        logger.info("vector_store_closed", store=type(self).__name__)

    async def __aenter__(self) -> "VectorStore":
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    # Operations

    async def is_index_created(self) -> bool:
        async with self._lock:
            self._require_open("is_index_created")
            return self._records is not None

    async def create_index_if_absent(self) -> None:
        """Create an empty index unless one already exists.

        Raises:
            StoreError: On I/O failure
        """
        async with self._lock:
            self._require_open("create_index")
            if self._records is not None:
                return
            await self._guarded("create_index", self._write, [])
            self._records = []

        logger.info("index_created", schema_version=self.schema_version)

    async def reset(self) -> None:
        """Replace the index with an empty one of the current schema version.

        Raises:
            StoreError: On I/O failure; the previous generation stays visible
        """
        async with self._lock:
            self._require_open("reset")
            previous = len(self._records or [])
            await self._guarded("reset", self._write, [])
            self._records = []

        logger.warning("index_reset", records_dropped=previous, schema_version=self.schema_version)

    async def insert(
        self, vector: Sequence[float], metadata: Optional[Dict[str, Any]] = None
    ) -> IndexRecord:
        """Append one record with a fresh id and a norm computed from ``vector``.

        Args:
            vector: Embedding vector
            metadata: JSON-serializable metadata, typically ``{"text": passage}``

        Returns:
            The stored record

        Raises:
            StoreError: If the index does not exist, the vector is invalid or
                the write fails
        """
        values = self._validate_vector(vector)
        record = IndexRecord(
            id=str(uuid.uuid4()),
            vector=values,
            norm=vector_norm(values),
            metadata=dict(metadata or {}),
        )

        async with self._lock:
            self._require_open("insert")
            if self._records is None:
                raise StoreError("insert", detail="index has not been created")

            if self._records and len(self._records[0].vector) != len(values):
                raise StoreError(
                    "insert",
                    detail=(
                        f"dimension mismatch: index holds {len(self._records[0].vector)}, "
                        f"got {len(values)}"
                    ),
                )

            updated = self._records + [record]
            await self._guarded("insert", self._write, updated)
            self._records = updated

        logger.debug("record_inserted", record_id=record.id, dimension=len(values))
        return record.copy()

    async def list_all(self) -> List[IndexRecord]:
        """Return every record in insertion order (empty if no index exists).

        Raises:
            StoreError: If the store is not open
        """
        async with self._lock:
            self._require_open("list_all")
            return [record.copy() for record in self._records or []]

    def stats(self) -> Dict[str, Any]:
        records = self._records or []
        return {
            "open": self._is_open,
            "index_created": self._records is not None,
            "record_count": len(records),
            "dimension": len(records[0].vector) if records else None,
            "schema_version": self.schema_version,
        }

    # Helpers

    def _require_open(self, operation: str) -> None:
        if not self._is_open:
            raise StoreError(operation, detail="store is not open")

    async def _guarded(self, operation: str, func, *args):
        """Run a blocking persistence hook off the event loop."""
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, func, *args)
        except StoreError:
            raise
        except (OSError, ValueError, TypeError, KeyError) as e:
            logger.error(
                "vector_store_io_failed",
                operation=operation,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise StoreError(operation, e) from e

    @staticmethod
    def _validate_vector(vector: Sequence[float]) -> List[float]:
        try:
            values = [float(v) for v in vector]
        except (TypeError, ValueError) as e:
            raise StoreError("insert", detail=f"vector is not numeric: {e}") from e
        if not values:
            raise StoreError("insert", detail="vector is empty")
        if not all(math.isfinite(v) for v in values):
            raise StoreError("insert", detail="vector contains non-finite values")
        return values


class LocalVectorStore(VectorStore):
    """Vector store persisted as a JSON file in a local directory."""

    def __init__(self, index_dir: Path = None, schema_version: int = None):
        """Initialize the local vector store.

        Args:
            index_dir: Directory holding index.json (default: config.INDEX_DIR)
            schema_version: Version written on create/reset (default from config)
        """
        super().__init__(schema_version=schema_version)
        self.index_dir = Path(config.INDEX_DIR if index_dir is None else index_dir)
        self.index_path = self.index_dir / INDEX_FILENAME

        logger.debug("local_vector_store_initialized", index_dir=str(self.index_dir))

    def _read(self) -> Optional[List[IndexRecord]]:
        if not self.index_path.exists():
            return None

        try:
            with open(self.index_path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise StoreError("open", detail=f"corrupted index file {self.index_path}: {e}") from e

        if not isinstance(data, dict) or not isinstance(data.get("items"), list):
            raise StoreError("open", detail=f"corrupted index file {self.index_path}: missing items")

        version = data.get("version")
        if version != self.schema_version:
            raise StoreError(
                "open",
                detail=f"index schema version {version} does not match {self.schema_version}",
            )

        try:
            return [IndexRecord.from_dict(item) for item in data["items"]]
        except (KeyError, TypeError, ValueError) as e:
            raise StoreError("open", detail=f"corrupted record in {self.index_path}: {e}") from e

    def _write(self, records: List[IndexRecord]) -> None:
        self.index_dir.mkdir(parents=True, exist_ok=True)
        data = {
            "version": self.schema_version,
            "items": [record.to_dict() for record in records],
        }

        fd, tmp_path = tempfile.mkstemp(
            dir=self.index_dir, prefix=".index-", suffix=".json.tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.index_path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise


class InMemoryVectorStore(VectorStore):
    """Vector store that keeps its generation in process memory only."""

    def __init__(self, schema_version: int = None):
        super().__init__(schema_version=schema_version)
        self._stored: Optional[List[IndexRecord]] = None

    def _read(self) -> Optional[List[IndexRecord]]:
        if self._stored is None:
            return None
        return [record.copy() for record in self._stored]

    def _write(self, records: List[IndexRecord]) -> None:
        self._stored = [record.copy() for record in records]
