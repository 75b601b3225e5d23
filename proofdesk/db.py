# proofdesk/db.py
import os
import json
import datetime
from typing import Optional, Dict, Any, List

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base, Session
from sqlalchemy.exc import SQLAlchemyError

from proofdesk import monitoring

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./proofdesk.db")

def _make_engine(url: str):
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    return create_engine(url, connect_args=connect_args)

engine = _make_engine(DATABASE_URL)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


def reconfigure(url: str):
    """Reconfigure the DB engine and session factory at runtime (for tests)."""
    global engine, SessionLocal
    engine = _make_engine(url)
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_session() -> Session:
    return SessionLocal()


def init_db():
    # Create tables if they don't exist
    try:
        import proofdesk.models as models  # noqa: F841
        Base.metadata.create_all(bind=engine)
    except Exception:
        # don't crash the app at import time
        monitoring.logger.exception("DB init failed")


def _parse_ts(ts_raw: Any) -> datetime.datetime:
    if isinstance(ts_raw, datetime.datetime):
        return ts_raw
    if isinstance(ts_raw, str):
        try:
            return datetime.datetime.fromisoformat(ts_raw.rstrip("Z"))
        except ValueError:
            pass
    return datetime.datetime.utcnow()


def save_review_event(event: Dict[str, Any]) -> Optional[int]:
    """
    Append one review event to the audit trail.
    event should include:
      - record_id (str)
      - action (str)    # approved | rejected | contacted | approve_send_failed
      - status (str)    # resolved SubmissionStatus, if any
      - user_id, paket  # copied from the record, it is deleted afterwards
      - detail (dict)   # optional
      - timestamp (iso str) optional; if missing set now
    Returns the DB id or None on error. The audit trail never fails a review.
    """
    from proofdesk.models import ReviewEventRecord
    db: Session = SessionLocal()
    try:
        ev = ReviewEventRecord(
            record_id=event.get("record_id"),
            user_id=event.get("user_id"),
            paket=event.get("paket"),
            action=event.get("action"),
            status=event.get("status"),
            timestamp=_parse_ts(event.get("timestamp")),
            detail_json=json.dumps(event.get("detail") or {}, ensure_ascii=False),
        )
        db.add(ev)
        db.commit()
        db.refresh(ev)
        return ev.id
    except SQLAlchemyError:
        db.rollback()
        monitoring.logger.exception("Audit save error", extra={"record_id": event.get("record_id")})
        return None
    finally:
        db.close()


def get_review_events(record_id: str) -> List[Dict[str, Any]]:
    """Return the stored audit events for a record id, oldest first."""
    from proofdesk.models import ReviewEventRecord
    db: Session = SessionLocal()
    try:
        rows = (
            db.query(ReviewEventRecord)
            .filter(ReviewEventRecord.record_id == record_id)
            .order_by(ReviewEventRecord.id)
            .all()
        )
        return [
            {
                "id": r.id,
                "record_id": r.record_id,
                "user_id": r.user_id,
                "paket": r.paket,
                "action": r.action,
                "status": r.status,
                "timestamp": r.timestamp.isoformat() if hasattr(r.timestamp, "isoformat") else r.timestamp,
                "detail": json.loads(r.detail_json or "{}"),
            }
            for r in rows
        ]
    except SQLAlchemyError:
        monitoring.logger.exception("Audit read error", extra={"record_id": record_id})
        return []
    finally:
        db.close()
