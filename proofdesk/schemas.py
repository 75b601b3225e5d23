# proofdesk/schemas.py
import datetime
import enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class SubmissionStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class Submission(BaseModel):
    """
    One pending payment-proof submission.

    Field names follow the persisted JSON layout (camelCase), so a record
    round-trips through transactions.json unchanged.
    """
    model_config = ConfigDict(use_enum_values=True)

    id: str
    userId: str
    username: str
    paket: str
    buktiPath: str
    timestamp: str
    status: SubmissionStatus = Field(default=SubmissionStatus.PENDING, validate_default=True)

    @property
    def is_lifetime(self) -> bool:
        return self.paket.strip().lower() == "lifetime"


class ReviewEvent(BaseModel):
    record_id: str
    user_id: Optional[str] = None
    paket: Optional[str] = None
    action: str  # "approved" | "rejected" | "contacted" | "approve_send_failed"
    status: Optional[str] = None
    detail: Dict[str, Any] = Field(default_factory=dict)
    timestamp: Optional[str] = None


def now_iso() -> str:
    return datetime.datetime.now(datetime.timezone.utc).isoformat().replace("+00:00", "Z")
