"""
Student API routes - exam identity, anonymous submission, result lookup.

The wallet address is accepted here only as payment identity: it feeds the
privacy audit and is never forwarded to the ledger or echoed back.
"""

from typing import Any, Dict, Optional
from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from fairtest.logging_config import get_logger, log_with_context
from fairtest.routes.dependencies import get_assembler
from fairtest.services.assembler import SubmissionAssembler

router = APIRouter()
logger = get_logger("http")


# ── Pydantic schemas ─────────────────────────────────────────

class StartExamRequest(BaseModel):
    wallet_address: str = Field(..., min_length=1, alias="walletAddress")

    model_config = {"populate_by_name": True, "str_strip_whitespace": True}


class StartExamResponse(BaseModel):
    """Exam identity as shown to the client: never the uid or uid hash."""
    examId: str
    finalHash: str
    persisted: bool
    warning: Optional[str] = None


class SubmitExamRequest(BaseModel):
    wallet_address: str = Field(..., min_length=1, alias="walletAddress")
    answers: Dict[str, Any] = Field(default_factory=dict, description="questionId -> answer")
    time_taken: Optional[float] = Field(None, ge=0, alias="timeTaken")

    model_config = {"populate_by_name": True, "str_strip_whitespace": True}


@router.post("/api/exams/{exam_id}/identity", response_model=StartExamResponse)
def start_exam(exam_id: str, request: StartExamRequest,
               assembler: SubmissionAssembler = Depends(get_assembler)):
    """Create the anonymous exam identity when a student begins an exam."""
    session = assembler.start_exam(request.wallet_address, exam_id)
    warning = None
    if not session.persisted:
        warning = ("Local identity storage is unavailable. You can finish the exam, "
                   "but results will not be recoverable on this device.")
    return StartExamResponse(
        examId=exam_id,
        finalHash=session.identity.final_hash,
        persisted=session.persisted,
        warning=warning,
    )


@router.post("/api/exams/{exam_id}/submissions")
async def submit_exam(exam_id: str, request: SubmitExamRequest,
                      assembler: SubmissionAssembler = Depends(get_assembler)):
    """Submit answers anonymously under the exam's FINAL_HASH."""
    receipt = await assembler.submit_exam(
        request.wallet_address, exam_id, request.answers, request.time_taken)
    log_with_context(logger, "INFO", "Submission accepted",
                     context={"exam_id": exam_id, "submission_id": receipt.submission_id})
    return receipt.to_ledger()


@router.get("/api/results/mine")
async def my_results(assembler: SubmissionAssembler = Depends(get_assembler)):
    """Results for the identities stored on this device."""
    results = await assembler.get_my_results()
    return {"data": results, "count": len(results)}
