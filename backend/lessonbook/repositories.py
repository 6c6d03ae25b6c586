"""Entity store contract and the JSON file backend.

`EntityStore` is the storage contract used by the service layer. Entity
kinds are identified by their model class (`models.Student`, ...), the
same way a SQLModel session addresses tables. Two implementations
exist: `JsonFileStore` here, and `database.SqlEntityStore` for a
relational backend.

All lookups that miss return `None` (or `False` for deletes); only
backend failures raise, as `StoreUnavailable`.
"""

import copy
import json
import logging
import os
import threading
import uuid
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Type, TypeVar

from pydantic.alias_generators import to_camel, to_snake
from sqlmodel import SQLModel

from . import models
from .errors import StoreUnavailable

logger = logging.getLogger("lessonbook.store")

E = TypeVar("E", bound=SQLModel)

FieldChange = Tuple[Type[SQLModel], str, dict]
RowKey = Tuple[Type[SQLModel], str]


def new_id() -> str:
    """Return a fresh random identity (uuid4, hex with dashes)."""
    return str(uuid.uuid4())


def order_key(model: Type[SQLModel], entity) -> tuple:
    """Sort key shared by both backends: creation timestamp, then id."""
    created = getattr(entity, models.CREATED_FIELD[model]) or datetime.min
    return (created, entity.id or "")


class EntityStore(ABC):
    """Keyed storage for the four entity kinds."""

    @abstractmethod
    def get(self, model: Type[E], entity_id: str) -> Optional[E]:
        """Return the row with `entity_id` or `None`."""

    @abstractmethod
    def list(self, model: Type[E]) -> List[E]:
        """Return every row of `model`, oldest first."""

    @abstractmethod
    def insert(self, entity: E) -> E:
        """Store a new row, assigning its id and creation timestamp when unset."""

    @abstractmethod
    def update(self, model: Type[E], entity_id: str, fields: dict) -> Optional[E]:
        """Merge `fields` into a row; `None` when the id is unknown."""

    @abstractmethod
    def delete(self, model: Type[SQLModel], entity_id: str) -> bool:
        """Remove a row; `False` when the id is unknown."""

    @abstractmethod
    def update_many(self, changes: Sequence[FieldChange]) -> bool:
        """Apply several merges as one unit.

        Either every change is applied or none is. Returns `False`
        without writing anything when one of the rows does not exist.
        """

    @abstractmethod
    def delete_many(self, keys: Sequence[RowKey]) -> int:
        """Remove several rows as one unit and return how many existed.

        Keys are deleted in the given order, so callers list children
        before parents.
        """

    def close(self) -> None:
        """Release backend resources."""


def _prepare_insert(entity: E) -> E:
    model = type(entity)
    if not entity.id:
        entity.id = new_id()
    created_field = models.CREATED_FIELD[model]
    if getattr(entity, created_field) is None:
        setattr(entity, created_field, models.local_now())
    return entity


def _writable(model: Type[SQLModel], fields: dict) -> dict:
    """Keep only known, non-identity fields of `model`."""
    return {k: v for k, v in fields.items() if k in model.model_fields and k != "id"}


class JsonFileStore(EntityStore):
    """In-process dict store flushed to one JSON file per entity kind.

    Each file is a JSON object keyed by id; values are the camelCase
    field set with ISO-8601 dates. Every mutation rewrites the whole
    file of each affected kind (temp file, then rename). When a write
    fails, the in-memory state is rolled back and `StoreUnavailable` is
    raised.
    """

    FILE_NAMES = {
        models.Student: "students.json",
        models.LessonPackage: "packages.json",
        models.Lesson: "lessons.json",
        models.Document: "documents.json",
    }

    def __init__(self, data_dir):
        self.data_dir = Path(data_dir)
        self._rows: Dict[Type[SQLModel], Dict[str, dict]] = {m: {} for m in self.FILE_NAMES}
        self._lock = threading.RLock()
        self._load()

    # persistence

    def _path(self, model: Type[SQLModel]) -> Path:
        return self.data_dir / self.FILE_NAMES[model]

    def _load(self) -> None:
        for model in self.FILE_NAMES:
            path = self._path(model)
            if not path.exists():
                continue
            try:
                raw = json.loads(path.read_text(encoding="utf-8"))
                self._rows[model] = {k: self._decode(model, v) for k, v in raw.items()}
            except (OSError, ValueError) as exc:
                raise StoreUnavailable(f"could not load {path}: {exc}") from exc
            logger.info("store_loaded %s", json.dumps({"file": str(path), "rows": len(self._rows[model])}))

    @staticmethod
    def _decode(model: Type[SQLModel], raw: dict) -> dict:
        row = {to_snake(k): v for k, v in raw.items()}
        row = {k: v for k, v in row.items() if k in model.model_fields}
        for field in models.DATE_FIELDS[model]:
            if row.get(field):
                row[field] = datetime.fromisoformat(row[field])
        return row

    @staticmethod
    def _encode(row: dict) -> dict:
        return {
            to_camel(k): v.isoformat() if isinstance(v, datetime) else v
            for k, v in row.items()
        }

    def _flush(self, model: Type[SQLModel]) -> None:
        path = self._path(model)
        tmp = path.with_name(path.name + ".tmp")
        data = {k: self._encode(v) for k, v in self._rows[model].items()}
        try:
            self.data_dir.mkdir(parents=True, exist_ok=True)
            tmp.write_text(json.dumps(data, indent=2), encoding="utf-8")
            os.replace(tmp, path)
        except OSError as exc:
            raise StoreUnavailable(f"could not write {path}: {exc}") from exc

    def _commit(self, touched: Iterable[Type[SQLModel]], apply):
        """Run `apply` on the in-memory rows and flush `touched` kinds.

        Must be called with the lock held.
        """
        touched = list(dict.fromkeys(touched))
        backup = {m: copy.deepcopy(self._rows[m]) for m in touched}
        result = apply()
        try:
            for model in touched:
                self._flush(model)
        except StoreUnavailable:
            self._rows.update(backup)
            for model in touched:
                try:
                    self._flush(model)
                except StoreUnavailable as exc:
                    logger.error("store_restore_failed %s", json.dumps({"kind": model.__name__, "error": str(exc)}))
            raise
        return result

    @staticmethod
    def _materialize(model: Type[E], row: dict) -> E:
        return model(**row)

    # contract

    def get(self, model, entity_id):
        with self._lock:
            row = self._rows[model].get(entity_id)
            return self._materialize(model, row) if row is not None else None

    def list(self, model):
        with self._lock:
            items = [self._materialize(model, row) for row in self._rows[model].values()]
        return sorted(items, key=lambda e: order_key(model, e))

    def insert(self, entity):
        model = type(entity)
        row = _prepare_insert(entity).model_dump()
        with self._lock:
            def apply():
                self._rows[model][row["id"]] = row
            self._commit([model], apply)
        return self._materialize(model, row)

    def update(self, model, entity_id, fields):
        with self._lock:
            if entity_id not in self._rows[model]:
                return None

            def apply():
                self._rows[model][entity_id].update(_writable(model, fields))
                return dict(self._rows[model][entity_id])
            row = self._commit([model], apply)
        return self._materialize(model, row)

    def delete(self, model, entity_id):
        return self.delete_many([(model, entity_id)]) == 1

    def update_many(self, changes):
        with self._lock:
            if any(entity_id not in self._rows[model] for model, entity_id, _ in changes):
                return False

            def apply():
                for model, entity_id, fields in changes:
                    self._rows[model][entity_id].update(_writable(model, fields))
            self._commit([m for m, _, fields in changes if fields], apply)
        return True

    def delete_many(self, keys):
        with self._lock:
            present = [(m, i) for m, i in dict.fromkeys(keys) if i in self._rows[m]]
            if not present:
                return 0

            def apply():
                for model, entity_id in present:
                    self._rows[model].pop(entity_id, None)
            self._commit([m for m, _ in present], apply)
        return len(present)
