"""
Exam API routes - publishing exams to the ledger and reading them back.

Provides endpoints for:
- Publishing an exam definition
- Fetching an exam with its questions
- Exam statistics (submissions, evaluated, pass/fail, average)
"""

import time
from typing import List, Optional
from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from fairtest.logging_config import get_logger, log_with_context
from fairtest.routes.dependencies import get_assembler
from fairtest.schemas import DEFAULT_PASS_PERCENTAGE, ExamDefinition, Question
from fairtest.services.assembler import SubmissionAssembler

router = APIRouter()
logger = get_logger("http")


# ── Pydantic schemas ─────────────────────────────────────────

class PublishExamRequest(BaseModel):
    """Schema for publishing an exam."""
    title: str = Field(..., min_length=1, description="Exam title")
    description: str = Field("", description="Free-form description")
    questions: List[Question] = Field(..., min_length=1, description="Questions; immutable once published")
    pass_percentage: float = Field(DEFAULT_PASS_PERCENTAGE, ge=0, le=100, alias="passPercentage")
    exam_id: Optional[str] = Field(None, alias="examId", description="Optional caller-chosen id")

    model_config = {"populate_by_name": True}


class PublishExamResponse(BaseModel):
    examId: str
    totalMarks: float


@router.post("/api/exams", response_model=PublishExamResponse)
async def publish_exam(request: PublishExamRequest,
                       assembler: SubmissionAssembler = Depends(get_assembler)):
    """Publish an exam definition to the ledger."""
    start_time = time.time()
    exam = ExamDefinition(
        exam_id=request.exam_id,
        title=request.title,
        description=request.description,
        questions=request.questions,
        pass_percentage=request.pass_percentage,
    )
    exam_id = await assembler.ledger.store_exam(exam)

    duration_ms = (time.time() - start_time) * 1000
    log_with_context(logger, "INFO", "Exam published: {}".format(request.title),
                     context={"exam_id": exam_id},
                     extra_data={"duration_ms": round(duration_ms, 2)})
    return PublishExamResponse(examId=exam_id, totalMarks=exam.total_marks)


@router.get("/api/exams/{exam_id}")
async def get_exam(exam_id: str, assembler: SubmissionAssembler = Depends(get_assembler)):
    """Fetch an exam definition."""
    exam = await assembler.ledger.get_exam(exam_id)
    return exam.to_ledger()


@router.get("/api/exams/{exam_id}/stats")
async def get_exam_stats(exam_id: str, assembler: SubmissionAssembler = Depends(get_assembler)):
    """Submission and result statistics for an exam."""
    await assembler.ledger.get_exam(exam_id)
    return await assembler.ledger.get_exam_stats(exam_id)
