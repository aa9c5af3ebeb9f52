"""
Result model - the final, merged evaluation of one submission.

Keyed by both parties' FINAL_HASH; no wallet addresses are stored.
"""

import uuid
import json
from datetime import datetime, timezone
from sqlalchemy import Column, Integer, Float, Boolean, DateTime, ForeignKey, Text, String, Index
from sqlalchemy.orm import relationship
from fairtest.database import Base


class Result(Base):
    """
    SQLAlchemy model for the results table.

    One-to-one with Submission. question_scores holds the per-question
    breakdown as JSON for auditing.
    """
    __tablename__ = "results"

    id = Column(String(64), primary_key=True, default=lambda: f"result_{uuid.uuid4().hex}",
                doc="Unique result identifier")
    submission_id = Column(String(64), ForeignKey("submissions.id"), nullable=False, unique=True,
                           doc="Evaluated submission")
    exam_id = Column(String(64), ForeignKey("exams.id"), nullable=False,
                     doc="Exam of the evaluated submission")
    student_final_hash = Column(String(128), nullable=False,
                                doc="Student FINAL_HASH")
    evaluator_final_hash = Column(String(128), nullable=False,
                                  doc="Synthetic evaluator FINAL_HASH")
    score = Column(Float, nullable=False, default=0,
                   doc="Total merged score")
    max_score = Column(Float, nullable=False, default=0,
                       doc="Sum of question marks")
    percentage = Column(Integer, nullable=False, default=0,
                        doc="round(100 * score / max_score)")
    passed = Column(Boolean, nullable=False, default=False,
                    doc="percentage >= exam pass_percentage")
    feedback = Column(Text, nullable=False, default="",
                      doc="Evaluator feedback")
    question_scores = Column(Text, nullable=False, default="[]",
                             doc="Per-question scores as JSON")
    evaluated_at = Column(DateTime, default=lambda: datetime.now(timezone.utc),
                          doc="When the result was stored")

    submission = relationship("Submission", back_populates="result")

    __table_args__ = (
        Index("ix_results_exam_id", "exam_id"),
        Index("ix_results_student_final_hash", "student_final_hash"),
    )

    @property
    def question_scores_list(self):
        """Parse question_scores JSON string to a list."""
        if isinstance(self.question_scores, list):
            return self.question_scores
        try:
            return json.loads(self.question_scores) if self.question_scores else []
        except (json.JSONDecodeError, TypeError):
            return []

    def __repr__(self):
        return f"<Result(id={self.id}, submission={self.submission_id}, score={self.score}/{self.max_score})>"
