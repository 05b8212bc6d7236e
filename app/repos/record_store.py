# app/repos/record_store.py
import logging
import threading
import uuid
from functools import lru_cache
from typing import Any, Dict, List, Optional

from app.config import FIRESTORE_PROJECT
from app.errors import RecordStoreError
from app.schemas.records import ColumnInfo, Record, TableInfo

logger = logging.getLogger(__name__)


class RecordStore:
    """
    Boundary to the tenant data backend (tables, columns, records).
    Only route handlers and the confirm workflow talk to it.
    """

    def get_table(self, tableId: str) -> Optional[TableInfo]:
        raise NotImplementedError

    def get_columns(self, tableId: str) -> List[ColumnInfo]:
        table = self.get_table(tableId)
        return table.columns if table else []

    def add_columns(self, tableId: str, names: List[str]) -> List[ColumnInfo]:
        raise NotImplementedError

    def get_record(self, recordId: str) -> Optional[Record]:
        raise NotImplementedError

    def get_records(self, recordIds: List[str]) -> List[Record]:
        records = []
        for recordId in recordIds:
            record = self.get_record(recordId)
            if record is not None:
                records.append(record)
        return records

    def insert_records(self, records: List[Dict[str, Any]]) -> List[str]:
        raise NotImplementedError

    def update_record(self, recordId: str, patch: Dict[str, Any]) -> None:
        raise NotImplementedError


# -------------------------------------------------
# In-memory store (LOCAL DEV / TESTS)
# -------------------------------------------------
class InMemoryRecordStore(RecordStore):
    def __init__(self):
        self._lock = threading.Lock()
        self.tables: Dict[str, TableInfo] = {}
        self.records: Dict[str, Record] = {}

    def add_table(self, table: TableInfo) -> TableInfo:
        self.tables[table.id] = table
        return table

    def get_table(self, tableId: str) -> Optional[TableInfo]:
        table = self.tables.get(tableId)
        return table.model_copy(deep=True) if table else None

    def add_columns(self, tableId: str, names: List[str]) -> List[ColumnInfo]:
        with self._lock:
            table = self.tables.get(tableId)
            if table is None:
                raise RecordStoreError(f"Table {tableId} does not exist")

            existing = {c.name for c in table.columns}
            added = [ColumnInfo(name=n, label=n) for n in names if n not in existing]
            table.columns.extend(added)
            return added

    def get_record(self, recordId: str) -> Optional[Record]:
        record = self.records.get(recordId)
        return record.model_copy(deep=True) if record else None

    def insert_records(self, records: List[Dict[str, Any]]) -> List[str]:
        ids = []
        with self._lock:
            for payload in records:
                recordId = payload.get("id") or f"rec_{uuid.uuid4().hex[:12]}"
                self.records[recordId] = Record(**{**payload, "id": recordId})
                ids.append(recordId)
        return ids

    def update_record(self, recordId: str, patch: Dict[str, Any]) -> None:
        with self._lock:
            current = self.records.get(recordId)
            if current is None:
                raise RecordStoreError(f"Record {recordId} does not exist")
            self.records[recordId] = current.model_copy(update=patch)


# -------------------------------------------------
# Factory
# -------------------------------------------------
@lru_cache(maxsize=1)
def get_record_store() -> RecordStore:
    if FIRESTORE_PROJECT:
        from app.repos.firestore_repo import FirestoreRecordStore
        return FirestoreRecordStore(project=FIRESTORE_PROJECT)

    logger.info("FIRESTORE_PROJECT not set → using in-memory record store")
    return InMemoryRecordStore()
