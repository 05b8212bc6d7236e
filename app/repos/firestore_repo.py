# app/repos/firestore_repo.py
import logging
from typing import Any, Dict, List, Optional

from google.auth.exceptions import DefaultCredentialsError
from google.cloud import firestore

from app.errors import RecordStoreError
from app.repos.record_store import RecordStore
from app.schemas.records import ColumnInfo, Record, TableInfo

logger = logging.getLogger(__name__)


class FirestoreRecordStore(RecordStore):
    """
    Firestore layout:
    - tables/{tableId}   → {organizationId, name, columns: [{name, label, type}]}
    - records/{recordId} → {tableId, organizationId, name, email, ..., data, metadata}
    """

    def __init__(self, project: str, client=None):
        if client is not None:
            self._db = client
            return

        try:
            self._db = firestore.Client(project=project)
        except DefaultCredentialsError as e:
            logger.error("Firestore credentials error: %s", e)
            raise RuntimeError("Firestore credentials are not configured") from e

    # ---------------------------------------------------
    # Tables
    # ---------------------------------------------------
    def get_table(self, tableId: str) -> Optional[TableInfo]:
        try:
            doc = self._db.collection("tables").document(tableId).get()
        except Exception as e:
            raise RecordStoreError(f"Failed to read table {tableId}: {e}") from e
        if not doc.exists:
            return None

        data = doc.to_dict() or {}
        return TableInfo(
            id=tableId,
            organizationId=data.get("organizationId", ""),
            name=data.get("name"),
            columns=[ColumnInfo(**c) for c in data.get("columns", [])],
        )

    def add_columns(self, tableId: str, names: List[str]) -> List[ColumnInfo]:
        table = self.get_table(tableId)
        if table is None:
            raise RecordStoreError(f"Table {tableId} does not exist")

        existing = {c.name for c in table.columns}
        added = [ColumnInfo(name=n, label=n) for n in names if n not in existing]
        if not added:
            return []

        self._db.collection("tables").document(tableId).update({
            "columns": firestore.ArrayUnion([c.model_dump() for c in added])
        })
        return added

    # ---------------------------------------------------
    # Records
    # ---------------------------------------------------
    def get_record(self, recordId: str) -> Optional[Record]:
        try:
            doc = self._db.collection("records").document(recordId).get()
            if not doc.exists:
                return None
            return Record(**{**(doc.to_dict() or {}), "id": recordId})
        except Exception as e:
            raise RecordStoreError(f"Failed to read record {recordId}: {e}") from e

    def insert_records(self, records: List[Dict[str, Any]]) -> List[str]:
        batch = self._db.batch()
        ids = []

        for payload in records:
            ref = self._db.collection("records").document()
            batch.set(ref, payload)
            ids.append(ref.id)

        try:
            batch.commit()
        except Exception as e:
            raise RecordStoreError(f"Failed to insert records: {e}") from e

        return ids

    def update_record(self, recordId: str, patch: Dict[str, Any]) -> None:
        try:
            self._db.collection("records").document(recordId).update(patch)
        except Exception as e:
            raise RecordStoreError(f"Failed to update record {recordId}: {e}") from e
