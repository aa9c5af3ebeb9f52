"""
Evaluator API routes - blind grading by FINAL_HASH.

Provides endpoints for:
- Listing pending submissions of an exam
- Stateless auto-evaluation and score merging
- Auto-evaluating a stored submission
- Publishing the merged result to the ledger
"""

from typing import Any, Dict, List, Optional
from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from fairtest.routes.dependencies import get_assembler
from fairtest.schemas import AutoEvalResult, Question
from fairtest.services import auto_evaluator
from fairtest.services.assembler import SubmissionAssembler

router = APIRouter()


# ── Pydantic schemas ─────────────────────────────────────────

class EvaluateRequest(BaseModel):
    questions: List[Question]
    answers: Dict[str, Any] = Field(default_factory=dict)


class MergeRequest(BaseModel):
    auto_result: AutoEvalResult = Field(..., alias="autoResult")
    manual_scores: Dict[str, Any] = Field(default_factory=dict, alias="manualScores")

    model_config = {"populate_by_name": True}


class PublishEvaluationRequest(BaseModel):
    wallet_address: str = Field(..., min_length=1, alias="walletAddress")
    manual_scores: Dict[str, Any] = Field(default_factory=dict, alias="manualScores")
    feedback: Optional[str] = ""

    model_config = {"populate_by_name": True, "str_strip_whitespace": True}


@router.get("/api/exams/{exam_id}/pending")
async def pending_submissions(exam_id: str, assembler: SubmissionAssembler = Depends(get_assembler)):
    """Pending submissions, identified only by FINAL_HASH."""
    submissions = await assembler.get_pending_submissions(exam_id)
    return {"data": submissions, "count": len(submissions)}


@router.post("/api/evaluations/auto")
def evaluate(request: EvaluateRequest):
    """Grade answers against a question list without touching the ledger."""
    return auto_evaluator.evaluate_exam(request.questions, request.answers).to_ledger()


@router.post("/api/evaluations/merge")
def merge(request: MergeRequest):
    """Merge manual scores into an auto-evaluation result."""
    return auto_evaluator.merge_final_score(request.auto_result, request.manual_scores).to_ledger()


@router.get("/api/submissions/{submission_id}/auto-evaluation")
async def auto_evaluate_submission(submission_id: str,
                                   assembler: SubmissionAssembler = Depends(get_assembler)):
    """Auto-evaluate a stored submission; manual-grading questions are flagged."""
    submission, exam, result = await assembler.auto_evaluate(submission_id)
    return {
        "submission": submission.to_ledger(),
        "examTitle": exam.title,
        "passPercentage": exam.pass_percentage,
        "autoEvaluation": result.to_ledger(),
        "needsManualGrading": bool(result.manual_grading),
    }


@router.post("/api/submissions/{submission_id}/evaluation")
async def publish_evaluation(submission_id: str, request: PublishEvaluationRequest,
                             assembler: SubmissionAssembler = Depends(get_assembler)):
    """Merge scores and publish the final result keyed by both FINAL_HASHes."""
    published = await assembler.publish_evaluation(
        request.wallet_address, submission_id, request.manual_scores, request.feedback or "")
    return published.to_ledger()
