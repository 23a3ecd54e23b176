"""
Storage manager for Trellis.

Defines the narrow document-store contract the core depends on
(StoreAdapter) and JsonStore, a file-backed implementation that keeps
one JSON file per collection in the .trellis/ directory.
"""

import copy
import json
import logging
import os
import tempfile
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple, Type, TypeVar

from pydantic import BaseModel, ValidationError

from trellis.constants import COLLECTIONS, DEFAULT_DATA_DIR, get_transaction_attempts
from trellis.exceptions import StorageError, TransientStoreError
from trellis.models.files import CollectionFile, ConfigFile, ViewStateFile

logger = logging.getLogger(__name__)

Document = Dict[str, Any]
Write = Tuple[str, str, Document]
T = TypeVar("T")
M = TypeVar("M", bound=BaseModel)

# One commit lock per data directory, shared by every JsonStore in the process.
_DIRECTORY_LOCKS: Dict[str, threading.RLock] = {}
_DIRECTORY_LOCKS_GUARD = threading.Lock()


def _directory_lock(path: Path) -> threading.RLock:
    key = str(path.resolve())
    with _DIRECTORY_LOCKS_GUARD:
        if key not in _DIRECTORY_LOCKS:
            _DIRECTORY_LOCKS[key] = threading.RLock()
        return _DIRECTORY_LOCKS[key]


def _is_live(doc: Document) -> bool:
    return not doc.get("deleted_at")


class Transaction:
    """
    Read/write handle passed to a StoreAdapter.transact() function.

    Reads observe a snapshot taken the first time each collection is read.
    Writes are buffered and applied only when the store commits.
    """

    def __init__(self, store: "JsonStore") -> None:
        self._store = store
        self._snapshots: Dict[str, CollectionFile] = {}
        self.reads: Dict[Tuple[str, str], int] = {}
        self.writes: Dict[Tuple[str, str], Document] = {}

    def _snapshot(self, collection: str) -> CollectionFile:
        if collection not in self._snapshots:
            self._snapshots[collection] = self._store._load_collection(collection)
        return self._snapshots[collection]

    def get(self, collection: str, doc_id: str) -> Optional[Document]:
        """Read a document (deleted or not) as of the transaction snapshot."""
        key = (collection, doc_id)
        if key in self.writes:
            return copy.deepcopy(self.writes[key])

        snapshot = self._snapshot(collection)
        self.reads.setdefault(key, snapshot.versions.get(doc_id, 0))
        doc = snapshot.documents.get(doc_id)
        return copy.deepcopy(doc) if doc is not None else None

    def set(self, collection: str, doc_id: str, doc: Document) -> None:
        """Stage a full-document write."""
        self._store._check_collection(collection)
        self.writes[(collection, doc_id)] = copy.deepcopy(doc)


class StoreAdapter(ABC):
    """
    Contract between the core and a transactional document store.

    Any store that can provide live queries with equality filters,
    optimistic transactions and atomic batches can back Trellis.
    """

    @abstractmethod
    def query_live(
        self,
        collection: str,
        filters: Optional[Dict[str, Any]] = None,
        order_by: Optional[str] = "updated_at",
    ) -> List[Document]:
        """Return non soft-deleted documents matching all equality filters."""

    @abstractmethod
    def get(self, collection: str, doc_id: str) -> Optional[Document]:
        """Return one document by id, deleted or not, or None."""

    @abstractmethod
    def transact(self, fn: Callable[[Transaction], T]) -> T:
        """Run fn inside an optimistic transaction, re-running it on conflict."""

    @abstractmethod
    def batch_write(self, writes: List[Write]) -> None:
        """Commit independent document writes atomically."""


class JsonStore(StoreAdapter):
    """
    Document store persisted as JSON files in the .trellis/ directory.

    Handles atomic writes to prevent data corruption, and per-document
    versions so that concurrent sessions over the same directory detect
    each other's writes inside transactions.
    """

    def __init__(self, data_dir: Optional[Path] = None, max_attempts: Optional[int] = None) -> None:
        """
        Initialize the JsonStore with a .trellis/ directory path.

        Args:
            data_dir: Path to the .trellis/ directory. Defaults to .trellis/ in current directory.
            max_attempts: Transaction attempts before giving up. Defaults to config.
        """
        self.data_dir = data_dir if data_dir else Path(DEFAULT_DATA_DIR)
        self.max_attempts = max_attempts if max_attempts is not None else get_transaction_attempts()
        self._ensure_data_dir()
        self._lock = _directory_lock(self.data_dir)

    def _ensure_data_dir(self) -> None:
        """Create the .trellis/ directory if it doesn't exist."""
        try:
            self.data_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(f"Cannot create data directory {self.data_dir}: {e}")

    def _check_collection(self, collection: str) -> None:
        if collection not in COLLECTIONS:
            raise ValueError(
                f"Unknown collection '{collection}'. Expected one of: {', '.join(COLLECTIONS)}."
            )

    def _collection_path(self, collection: str) -> Path:
        return self.data_dir / f"{collection}.json"

    # =========================================================================
    # Low-level file access
    # =========================================================================

    def _read_json(self, file_path: Path) -> Optional[Dict[str, Any]]:
        if not file_path.exists():
            return None
        try:
            with open(file_path, "r") as f:
                return json.load(f)
        except json.JSONDecodeError as e:
            raise StorageError(f"Failed to load {file_path.name}: {e}")
        except OSError as e:
            raise StorageError(f"Failed to read {file_path}: {e}")

    def _stage_write(self, data: Dict[str, Any]) -> str:
        """Write data to a temp file in the data directory and return its path."""
        try:
            temp_fd, temp_path = tempfile.mkstemp(
                dir=self.data_dir, prefix=".tmp_trellis_", suffix=".json"
            )
        except OSError as e:
            raise StorageError(f"Failed to stage write in {self.data_dir}: {e}")

        try:
            with os.fdopen(temp_fd, "w") as temp_file:
                json.dump(data, temp_file, indent=2)
        except Exception as e:
            self._discard(temp_path)
            raise StorageError(f"Failed to stage write: {e}")
        return temp_path

    @staticmethod
    def _discard(temp_path: str) -> None:
        try:
            os.unlink(temp_path)
        except OSError:
            pass

    def _atomic_write_many(self, files: Dict[Path, Dict[str, Any]]) -> None:
        """Write several JSON files, staging all of them before replacing any.

        Args:
            files: Mapping of destination path to data.

        Raises:
            StorageError: If staging or replacing fails.
        """
        staged: List[Tuple[str, Path]] = []
        try:
            for file_path, data in files.items():
                staged.append((self._stage_write(data), file_path))
        except StorageError:
            for temp_path, _ in staged:
                self._discard(temp_path)
            raise

        for temp_path, file_path in staged:
            try:
                os.replace(temp_path, file_path)
            except OSError as e:
                self._discard(temp_path)
                raise StorageError(f"Failed to write to {file_path}: {e}")

    def _load_collection(self, collection: str) -> CollectionFile:
        self._check_collection(collection)
        data = self._read_json(self._collection_path(collection))
        if data is None:
            return CollectionFile()
        try:
            return CollectionFile.model_validate(data)
        except ValidationError as e:
            raise StorageError(f"Failed to load {collection}.json: {e}")

    def _apply(self, writes: Dict[Tuple[str, str], Document], files: Dict[str, CollectionFile]) -> None:
        for (collection, doc_id), doc in writes.items():
            target = files[collection]
            target.documents[doc_id] = doc
            target.versions[doc_id] = target.versions.get(doc_id, 0) + 1

        self._atomic_write_many(
            {
                self._collection_path(collection): data.model_dump(mode="json")
                for collection, data in files.items()
            }
        )

    # =========================================================================
    # StoreAdapter contract
    # =========================================================================

    def query_live(
        self,
        collection: str,
        filters: Optional[Dict[str, Any]] = None,
        order_by: Optional[str] = "updated_at",
    ) -> List[Document]:
        """Return live documents matching all equality filters.

        Args:
            collection: Collection name.
            filters: Field -> value equality filters. A missing field compares as None.
            order_by: Field to sort by (ascending), or None to keep storage order.

        Returns:
            Deep copies of the matching documents.
        """
        data = self._load_collection(collection)
        filters = filters or {}

        matches = [
            copy.deepcopy(doc)
            for doc in data.documents.values()
            if _is_live(doc) and all(doc.get(k) == v for k, v in filters.items())
        ]
        if order_by:
            matches.sort(key=lambda d: (d.get(order_by) is None, str(d.get(order_by) or "")))
        return matches

    def get(self, collection: str, doc_id: str) -> Optional[Document]:
        doc = self._load_collection(collection).documents.get(doc_id)
        return copy.deepcopy(doc) if doc is not None else None

    def transact(self, fn: Callable[[Transaction], T]) -> T:
        """Run fn with a Transaction; commit its writes if nothing it read changed.

        Exceptions raised by fn abort the transaction and propagate unchanged.

        Raises:
            TransientStoreError: If every attempt hit a write conflict.
        """
        for attempt in range(1, self.max_attempts + 1):
            txn = Transaction(self)
            result = fn(txn)
            if self._commit(txn):
                return result
            logger.debug("Transaction conflict on attempt %d/%d, retrying", attempt, self.max_attempts)

        raise TransientStoreError(
            f"Transaction kept conflicting with other writers after {self.max_attempts} attempts."
        )

    def _commit(self, txn: Transaction) -> bool:
        with self._lock:
            collections = {c for c, _ in txn.reads} | {c for c, _ in txn.writes}
            current = {c: self._load_collection(c) for c in collections}

            for (collection, doc_id), version in txn.reads.items():
                if current[collection].versions.get(doc_id, 0) != version:
                    return False

            if txn.writes:
                written = {c for c, _ in txn.writes}
                self._apply(txn.writes, {c: current[c] for c in written})
            return True

    def batch_write(self, writes: List[Write]) -> None:
        """Commit a list of (collection, id, document) writes in one step."""
        if not writes:
            return
        staged: Dict[Tuple[str, str], Document] = {}
        for collection, doc_id, doc in writes:
            self._check_collection(collection)
            staged[(collection, doc_id)] = copy.deepcopy(doc)

        with self._lock:
            files = {c: self._load_collection(c) for c, _ in staged}
            self._apply(staged, files)
        logger.debug("Committed batch of %d write(s)", len(staged))

    # =========================================================================
    # Config File
    # =========================================================================

    def load_config(self) -> ConfigFile:
        """Load config.json and return as ConfigFile model."""
        data = self._read_json(self.data_dir / "config.json")
        if data is None:
            return ConfigFile()
        try:
            return ConfigFile.model_validate(data)
        except ValidationError as e:
            raise StorageError(f"Failed to load config.json: {e}")

    def save_config(self, data: ConfigFile) -> None:
        """Save ConfigFile model to config.json."""
        self._atomic_write_many({self.data_dir / "config.json": data.model_dump(mode="json")})

    # =========================================================================
    # View State File
    # =========================================================================

    def load_view_state(self) -> ViewStateFile:
        """Load view_state.json and return as ViewStateFile model."""
        data = self._read_json(self.data_dir / "view_state.json")
        if data is None:
            return ViewStateFile()
        try:
            return ViewStateFile.model_validate(data)
        except ValidationError as e:
            raise StorageError(f"Failed to load view_state.json: {e}")

    def save_view_state(self, data: ViewStateFile) -> None:
        """Save ViewStateFile model to view_state.json."""
        self._atomic_write_many({self.data_dir / "view_state.json": data.model_dump(mode="json")})


def to_record(model_cls: Type[M], doc: Document) -> M:
    """Validate a stored document into its model.

    Raises:
        StorageError: If the document does not fit the model.
    """
    try:
        return model_cls.model_validate(doc)
    except ValidationError as e:
        raise StorageError(f"Stored {model_cls.__name__} '{doc.get('id', '?')}' is malformed: {e}")
