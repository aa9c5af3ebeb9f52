"""
Exam model - an exam published on the reference ledger.

Questions are stored as a JSON list and are immutable after publishing.
"""

import uuid
import json
from datetime import datetime, timezone
from sqlalchemy import Column, Text, Float, DateTime, String
from sqlalchemy.orm import relationship
from fairtest.database import Base


class Exam(Base):
    """SQLAlchemy model for the exams table."""
    __tablename__ = "exams"

    id = Column(String(64), primary_key=True, default=lambda: f"exam_{uuid.uuid4().hex}",
                doc="Unique exam identifier")
    title = Column(Text, nullable=False,
                   doc="Exam title")
    description = Column(Text, nullable=False, default="",
                         doc="Free-form description")
    questions = Column(Text, nullable=False, default="[]",
                       doc="Question list as JSON")
    pass_percentage = Column(Float, nullable=False, default=40,
                             doc="Minimum percentage needed to pass")
    total_marks = Column(Float, nullable=False, default=0,
                         doc="Sum of question marks")
    status = Column(Text, nullable=False, default="active",
                    doc="active | archived")
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc),
                        doc="When the exam was published")

    submissions = relationship("Submission", back_populates="exam")

    @property
    def questions_list(self):
        """Parse questions JSON string to a list."""
        if isinstance(self.questions, list):
            return self.questions
        try:
            return json.loads(self.questions) if self.questions else []
        except (json.JSONDecodeError, TypeError):
            return []

    def __repr__(self):
        return f"<Exam(id={self.id}, title='{self.title}', total_marks={self.total_marks})>"
