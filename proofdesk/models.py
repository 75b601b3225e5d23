# proofdesk/models.py
from sqlalchemy import Column, Integer, String, DateTime, Text
import datetime

from proofdesk.db import Base


class PendingSubmissionRecord(Base):
    __tablename__ = "pending_submissions"

    seq = Column(Integer, primary_key=True, autoincrement=True)
    id = Column(String(64), unique=True, index=True, nullable=False)
    user_id = Column(String(128), nullable=False)
    username = Column(String(255), nullable=False)
    paket = Column(String(128), nullable=False)
    bukti_path = Column(String(512), nullable=False)
    timestamp = Column(String(64), nullable=False)
    status = Column(String(32), nullable=False, default="pending")


class ReviewEventRecord(Base):
    __tablename__ = "review_events"

    id = Column(Integer, primary_key=True, index=True)
    record_id = Column(String(64), index=True, nullable=False)
    user_id = Column(String(128), nullable=True)
    paket = Column(String(128), nullable=True)
    action = Column(String(32), nullable=False)
    status = Column(String(32), nullable=True)
    timestamp = Column(DateTime, default=datetime.datetime.utcnow)
    detail_json = Column(Text, nullable=True)
