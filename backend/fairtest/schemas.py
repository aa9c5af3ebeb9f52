"""
Pydantic data models shared by the identity, evaluation and ledger layers.

Every model reads and writes camelCase aliases (finalHash, examId, ...) to
match ledger records, and also accepts snake_case field names.
"""

import os
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

DEFAULT_PASS_PERCENTAGE = float(os.getenv("FAIRTEST_DEFAULT_PASS_PERCENTAGE", "40"))


class CamelModel(BaseModel):
    """Base model with camelCase aliases."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_ledger(self) -> dict:
        """JSON-ready dict with camelCase keys."""
        return self.model_dump(by_alias=True, mode="json")


# ── Identity ─────────────────────────────────────────────────

class ExamIdentity(CamelModel):
    """
    Anonymous exam identity for one wallet x exam pair.

    `uid` and `uid_hash` stay on the device; `final_hash` is the only value
    that is ever written to the ledger. `wallet_address` and `salt` are
    excluded from every serialization.
    """
    uid: str = Field(..., min_length=1)
    uid_hash: str = Field(..., min_length=1)
    final_hash: str = Field(..., min_length=1)
    exam_id: str
    timestamp: int
    wallet_address: Optional[str] = Field(default=None, exclude=True)
    salt: Optional[str] = Field(default=None, exclude=True)

    def to_local_record(self) -> dict:
        """Fields persisted in local identity storage (no wallet, no salt)."""
        return self.model_dump(
            by_alias=True,
            include={"uid", "uid_hash", "final_hash", "exam_id", "timestamp"},
        )


class SubmissionPayload(CamelModel):
    """Anonymized submission handed to the ledger. Exactly four fields."""
    model_config = ConfigDict(extra="forbid", frozen=True)

    final_hash: str
    exam_id: str
    answer_hash: str
    timestamp: int


class PrivacyAudit(CamelModel):
    passed: bool
    found_in_data: bool


class IdentitySeparation(CamelModel):
    separated: bool
    payment_has_wallet: bool
    exam_has_wallet: bool


# ── Questions and grading ────────────────────────────────────

class QuestionKind(str, Enum):
    """Known question types plus an explicit fallback for anything else."""
    MCQ = "mcq"
    MULTIPLE_CORRECT = "multiple_correct"
    TRUE_FALSE = "true_false"
    NUMERIC = "numeric"
    SHORT_ANSWER = "short_answer"
    ESSAY = "essay"
    UNKNOWN = "unknown"

    @classmethod
    def _missing_(cls, value):
        return cls.UNKNOWN


class Question(CamelModel):
    """A published exam question. Frozen once built."""
    model_config = ConfigDict(frozen=True)

    id: str
    type: str = QuestionKind.UNKNOWN.value
    text: str = ""
    options: Optional[List[Any]] = None
    correct_answer: Optional[Any] = None
    correct_answers: Optional[List[Any]] = None
    # Numeric questions only; None means exact match.
    tolerance: Optional[float] = Field(default=None, ge=0)
    marks: float = Field(..., gt=0)

    @field_validator("id", mode="before")
    @classmethod
    def _id_as_string(cls, value):
        return str(value) if value is not None else value

    @field_validator("type", mode="before")
    @classmethod
    def _type_as_string(cls, value):
        if value is None:
            return QuestionKind.UNKNOWN.value
        return str(value)

    @property
    def kind(self) -> QuestionKind:
        return QuestionKind(self.type.strip().lower())


class QuestionScore(CamelModel):
    question_id: str
    score: float
    max_marks: float
    # None while a question waits for manual grading
    correct: Optional[bool] = None
    auto_graded: bool


class AutoEvalResult(CamelModel):
    total_score: float
    max_score: float
    question_scores: List[QuestionScore] = Field(default_factory=list)
    auto_graded: List[str] = Field(default_factory=list)
    manual_grading: List[str] = Field(default_factory=list)


class FinalResult(CamelModel):
    total_score: float
    max_score: float
    percentage: int
    question_scores: List[QuestionScore] = Field(default_factory=list)


# ── Ledger records ───────────────────────────────────────────

class ExamDefinition(CamelModel):
    """Exam as published on the ledger."""
    exam_id: Optional[str] = None
    title: str = ""
    description: str = ""
    questions: List[Question] = Field(default_factory=list)
    pass_percentage: float = Field(default=DEFAULT_PASS_PERCENTAGE, ge=0, le=100)
    total_marks: Optional[float] = None

    @model_validator(mode="after")
    def _fill_total_marks(self):
        if self.total_marks is None:
            self.total_marks = sum(q.marks for q in self.questions)
        return self


class PendingSubmission(CamelModel):
    """A stored submission as an evaluator sees it: FINAL_HASH only."""
    submission_id: str
    exam_id: str
    final_hash: str
    answer_hash: Optional[str] = None
    answers: Dict[str, Any] = Field(default_factory=dict)
    time_taken: Optional[float] = None
    status: str = "pending_evaluation"


class ResultRecord(CamelModel):
    """Final evaluation handed to the ledger, keyed by both FINAL_HASHes."""
    model_config = ConfigDict(extra="forbid")

    submission_id: str
    exam_id: str
    student_final_hash: str
    evaluator_final_hash: str
    score: float
    max_score: float
    percentage: int
    passed: bool
    feedback: str = ""
    question_scores: List[QuestionScore] = Field(default_factory=list)


# ── Assembler outcomes ───────────────────────────────────────

class IdentitySession(BaseModel):
    """Identity created when an exam starts; persisted=False means ephemeral."""
    identity: ExamIdentity
    persisted: bool


class SubmissionReceipt(CamelModel):
    submission_id: str
    exam_id: str
    final_hash: str
    answer_hash: str


class PublishedResult(CamelModel):
    result_id: str
    record: ResultRecord
