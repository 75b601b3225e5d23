# proofdesk/store.py
"""
Record store for pending submissions.

Env vars:
- RECORD_STORE (default: json) - "json" for the flat file, "sql" for the DB
- TRANSACTIONS_FILE (default: $DATA_DIR/transactions.json)

Every mutation is load -> mutate -> save of the whole set, serialized by a
per-store lock. The JSON file is replaced atomically, so a concurrent reader
sees either the old or the new array. One writer process is assumed.
Read and write failures are logged as PersistenceWarning and swallowed.
"""
import json
import os
import tempfile
import threading
import warnings
from pathlib import Path
from typing import List, Optional

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import SQLAlchemyError

from proofdesk import monitoring
from proofdesk import db as dbmod
from proofdesk.errors import PersistenceWarning
from proofdesk.schemas import Submission
from proofdesk.storage import LocalStorage


def _warn(operation: str, message: str):
    monitoring.inc_persistence_warning(operation)
    monitoring.logger.warning(message, extra={"operation": operation})
    warnings.warn(message, PersistenceWarning, stacklevel=3)


class RecordStore:
    """Base contract. Subclasses implement load_all/save_all."""

    def __init__(self, storage: Optional[LocalStorage] = None):
        self.storage = storage
        self._lock = threading.RLock()

    def load_all(self) -> List[Submission]:
        raise NotImplementedError

    def save_all(self, records: List[Submission]) -> None:
        raise NotImplementedError

    def get(self, record_id: str) -> Optional[Submission]:
        for rec in self.load_all():
            if rec.id == record_id:
                return rec
        return None

    def append(self, record: Submission) -> Submission:
        with self._lock:
            records = self.load_all()
            records.append(record)
            self.save_all(records)
        return record

    def remove_by_id(self, record_id: str) -> bool:
        """Delete the proof file (if present) then the record. False if unknown id."""
        with self._lock:
            records = self.load_all()
            index = next((i for i, r in enumerate(records) if r.id == record_id), -1)
            if index == -1:
                return False
            rec = records[index]
            if rec.buktiPath and self.storage is not None:
                self.storage.delete(rec.buktiPath)
            records.pop(index)
            self.save_all(records)
            return True


class JsonFileRecordStore(RecordStore):
    """Pretty-printed JSON array in a single file, rewritten on every save."""

    def __init__(self, path: Path, storage: Optional[LocalStorage] = None):
        super().__init__(storage)
        self.path = Path(path)

    def load_all(self) -> List[Submission]:
        if not self.path.exists():
            return []
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            _warn("load", f"Failed to load {self.path}: {e}")
            return []
        if not isinstance(data, list):
            _warn("load", f"{self.path} does not hold a JSON array; treating as empty")
            return []
        records: List[Submission] = []
        for item in data:
            try:
                records.append(Submission.model_validate(item))
            except PydanticValidationError as e:
                _warn("load", f"Skipping malformed record in {self.path}: {e.error_count()} error(s)")
        return records

    def save_all(self, records: List[Submission]) -> None:
        payload = json.dumps([r.model_dump(mode="json") for r in records], indent=2, ensure_ascii=False)
        tmp_name = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            # write beside the target and swap it in, readers never see a partial file
            with tempfile.NamedTemporaryFile("w", encoding="utf-8", dir=self.path.parent,
                                             prefix=self.path.name + ".", suffix=".tmp",
                                             delete=False) as tmp:
                tmp_name = tmp.name
                tmp.write(payload)
                tmp.flush()
                os.fsync(tmp.fileno())
            os.replace(tmp_name, self.path)
            tmp_name = None
        except OSError as e:
            _warn("save", f"Failed to save {self.path}: {e}")
        finally:
            if tmp_name is not None:
                try:
                    os.unlink(tmp_name)
                except FileNotFoundError:
                    pass


class SqlRecordStore(RecordStore):
    """Same contract on the pending_submissions table."""

    def load_all(self) -> List[Submission]:
        from proofdesk.models import PendingSubmissionRecord
        session = dbmod.get_session()
        try:
            rows = session.query(PendingSubmissionRecord).order_by(PendingSubmissionRecord.seq).all()
            return [
                Submission(
                    id=r.id, userId=r.user_id, username=r.username, paket=r.paket,
                    buktiPath=r.bukti_path, timestamp=r.timestamp, status=r.status,
                )
                for r in rows
            ]
        except SQLAlchemyError as e:
            _warn("load", f"Failed to load pending submissions: {e}")
            return []
        finally:
            session.close()

    def save_all(self, records: List[Submission]) -> None:
        from proofdesk.models import PendingSubmissionRecord
        session = dbmod.get_session()
        try:
            session.query(PendingSubmissionRecord).delete()
            for r in records:
                session.add(PendingSubmissionRecord(
                    id=r.id, user_id=r.userId, username=r.username, paket=r.paket,
                    bukti_path=r.buktiPath, timestamp=r.timestamp, status=r.status,
                ))
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            _warn("save", f"Failed to save pending submissions: {e}")
        finally:
            session.close()


def store_from_env(storage: LocalStorage) -> RecordStore:
    backend = (os.getenv("RECORD_STORE") or "json").strip().lower()
    if backend == "sql":
        dbmod.init_db()
        return SqlRecordStore(storage)
    data_dir = Path(os.getenv("DATA_DIR") or os.getcwd())
    path = Path(os.getenv("TRANSACTIONS_FILE") or (data_dir / "transactions.json"))
    return JsonFileRecordStore(path, storage)
