"""
Submission model - an anonymized exam submission on the reference ledger.

Only the student's FINAL_HASH identifies the submission. There is no wallet,
uid or uid_hash column by construction.

Statuses:
- pending_evaluation: waiting for an evaluator
- evaluated: a result has been stored
"""

import uuid
import json
from datetime import datetime, timezone
from sqlalchemy import Column, Text, Float, BigInteger, DateTime, ForeignKey, Index, String
from sqlalchemy.orm import relationship
from fairtest.database import Base


class Submission(Base):
    """SQLAlchemy model for the submissions table."""
    __tablename__ = "submissions"

    id = Column(String(64), primary_key=True, default=lambda: f"sub_{uuid.uuid4().hex}",
                doc="Unique submission identifier")
    exam_id = Column(String(64), ForeignKey("exams.id"), nullable=False,
                     doc="Exam this submission answers")
    final_hash = Column(String(128), nullable=False,
                        doc="Student FINAL_HASH (anonymous)")
    answer_hash = Column(String(128), nullable=False,
                         doc="Digest of the canonical answers JSON")
    answers = Column(Text, nullable=False, default="{}",
                     doc="Answers as JSON: {questionId: answer}")
    time_taken = Column(Float, nullable=True,
                        doc="Seconds spent on the exam, if reported")
    client_timestamp = Column(BigInteger, nullable=False,
                              doc="Payload timestamp in epoch milliseconds")
    status = Column(Text, nullable=False, default="pending_evaluation",
                    doc="pending_evaluation | evaluated")
    submitted_at = Column(DateTime, default=lambda: datetime.now(timezone.utc),
                          doc="When the ledger accepted the submission")

    exam = relationship("Exam", back_populates="submissions")
    result = relationship("Result", back_populates="submission", uselist=False)

    __table_args__ = (
        Index("ix_submissions_exam_id", "exam_id"),
        Index("ix_submissions_status", "status"),
        Index("ix_submissions_final_hash", "final_hash"),
    )

    @property
    def answers_dict(self):
        """Parse answers JSON string to dict."""
        if isinstance(self.answers, dict):
            return self.answers
        try:
            return json.loads(self.answers) if self.answers else {}
        except (json.JSONDecodeError, TypeError):
            return {}

    def __repr__(self):
        return f"<Submission(id={self.id}, exam={self.exam_id}, status='{self.status}')>"
