# proofdesk/intake.py
import uuid
from typing import Optional

from proofdesk import monitoring
from proofdesk.broadcaster import Broadcaster
from proofdesk.errors import ValidationError
from proofdesk.schemas import Submission, SubmissionStatus, now_iso
from proofdesk.storage import LocalStorage, make_proof_filename
from proofdesk.store import RecordStore


def _blank(value: Optional[str]) -> bool:
    return value is None or not str(value).strip()


class SubmissionIntake:
    def __init__(self, store: RecordStore, storage: LocalStorage, broadcaster: Broadcaster):
        self.store = store
        self.storage = storage
        self.broadcaster = broadcaster

    def submit(self, user_id: Optional[str], username: Optional[str], paket: Optional[str],
               filename: Optional[str], content: Optional[bytes]) -> Submission:
        """
        Store the proof file, append a pending record and broadcast "created".

        Raises ValidationError (and writes nothing) if any of user_id,
        username, paket or the file is missing.
        """
        missing = [
            name for name, value in (("userId", user_id), ("username", username), ("paket", paket))
            if _blank(value)
        ]
        if _blank(filename) or not content:
            missing.append("bukti")
        if missing:
            monitoring.inc_submission("invalid")
            raise ValidationError("Incomplete submission", {"missing": missing})

        stored_name = make_proof_filename(filename)
        bukti_path = self.storage.put_bytes(stored_name, content)

        record = Submission(
            id=str(uuid.uuid4()),
            userId=str(user_id).strip(),
            username=str(username).strip(),
            paket=str(paket).strip(),
            buktiPath=bukti_path,
            timestamp=now_iso(),
            status=SubmissionStatus.PENDING,
        )
        self.store.append(record)
        self.broadcaster.broadcast_created(record)
        monitoring.inc_submission("accepted")
        monitoring.logger.info("Submission stored", extra={"record_id": record.id, "paket": record.paket})
        return record
