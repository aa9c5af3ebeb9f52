"""
Submission/Result Assembler - coordinates identity, audit, grading and ledger.

Student path:
1. start_exam: derive UID -> UID_HASH -> FINAL_HASH and persist it locally
2. submit_exam: build the anonymized payload, audit it against the wallet,
   then hand it to the ledger

Evaluator path:
1. auto_evaluate: pull the submission and exam, grade objective questions
2. publish_evaluation: merge manual scores, derive a synthetic evaluator
   identity, audit the result record, then hand it to the ledger

A failed privacy audit aborts the write. Ledger errors propagate unchanged.
"""

import time
from typing import Any, Dict, List, Mapping, Optional, Tuple

from fastapi.concurrency import run_in_threadpool

from fairtest.errors import PrivacyViolation
from fairtest.logging_config import get_logger, log_with_context, short_hash
from fairtest.schemas import (
    AutoEvalResult, ExamDefinition, ExamIdentity, IdentitySession, PendingSubmission,
    PublishedResult, ResultRecord, SubmissionReceipt,
)
from fairtest.services import auto_evaluator
from fairtest.services.identity import AnonymousIdentityManager
from fairtest.services.ledger import Ledger

logger = get_logger("assembler")


def evaluator_exam_key(submission_id: str) -> str:
    """Exam id used to derive the evaluator's per-submission identity."""
    return f"eval_{submission_id}"


class SubmissionAssembler:
    """
    Thin coordinator over AnonymousIdentityManager, the auto evaluator and a Ledger.

    Args:
        identity: Identity manager holding this device's identity store
        ledger: Ledger adapter
    """

    def __init__(self, identity: AnonymousIdentityManager, ledger: Ledger):
        self.identity = identity
        self.ledger = ledger
        # Identities created in this session, kept for when local storage is unavailable
        self._session_identities: Dict[str, ExamIdentity] = {}

    # ── Student path ─────────────────────────────────────────

    def start_exam(self, wallet_address: str, exam_id: str) -> IdentitySession:
        """
        Create and persist the exam identity when a student begins an exam.

        persisted=False means the identity only lives in this session and the
        student should be warned that results cannot be recovered later.
        """
        identity = self.identity.generate_exam_identity(wallet_address, exam_id)
        persisted = self.identity.store_uid_locally(identity)
        self._session_identities[exam_id] = identity

        if not persisted:
            log_with_context(logger, "WARNING", "Exam started with an ephemeral identity",
                             context={"exam_id": exam_id})
        return IdentitySession(identity=identity, persisted=persisted)

    def get_exam_identity(self, exam_id: str) -> Optional[ExamIdentity]:
        recovered = self.identity.recover_uid(exam_id)
        if recovered is not None:
            return recovered
        return self._session_identities.get(exam_id)

    async def submit_exam(self, wallet_address: str, exam_id: str, answers: Mapping[str, Any],
                          time_taken: Optional[float] = None) -> SubmissionReceipt:
        """
        Submit answers under the exam identity; the wallet never reaches the ledger.

        Raises:
            PrivacyViolation: the wallet address was found in the outgoing record
            LedgerWriteError: propagated from the ledger
        """
        start_time = time.time()

        # Identity storage is synchronous; keep it off the event loop
        identity = await run_in_threadpool(self.get_exam_identity, exam_id)
        if identity is None:
            session = await run_in_threadpool(self.start_exam, wallet_address, exam_id)
            identity = session.identity

        payload = self.identity.create_submission_payload(identity, exam_id, answers)

        # Audit everything the ledger will receive, not only the payload
        self.identity.enforce_privacy(payload, wallet_address)
        self.identity.enforce_privacy(
            {**payload.to_ledger(), "answers": answers, "timeTaken": time_taken},
            wallet_address,
        )

        submission_id = await self.ledger.store_submission(payload, answers, time_taken)

        duration_ms = (time.time() - start_time) * 1000
        log_with_context(logger, "INFO", "Exam submitted anonymously",
                         context={
                             "exam_id": exam_id,
                             "submission_id": submission_id,
                             "final_hash": short_hash(payload.final_hash),
                         },
                         extra_data={"duration_ms": round(duration_ms, 2)})

        return SubmissionReceipt(
            submission_id=submission_id,
            exam_id=exam_id,
            final_hash=payload.final_hash,
            answer_hash=payload.answer_hash,
        )

    async def get_my_results(self) -> List[dict]:
        """
        Results for every identity held on this device, queried by FINAL_HASH
        and enriched with the exam's title and total marks.
        """
        identities = await run_in_threadpool(self.identity.list_local_identities)
        results = []
        for identity in identities:
            results.extend(await self.ledger.get_student_results(identity.final_hash))

        exams: Dict[str, ExamDefinition] = {}
        enriched = []
        for result in results:
            exam_id = result.get("examId")
            if exam_id not in exams:
                exams[exam_id] = await self.ledger.get_exam(exam_id)
            enriched.append({
                **result,
                "examTitle": exams[exam_id].title,
                "examTotalMarks": exams[exam_id].total_marks,
            })

        log_with_context(logger, "INFO", "Retrieved {} results by FINAL_HASH".format(len(enriched)))
        return enriched

    # ── Evaluator path ───────────────────────────────────────

    async def get_pending_submissions(self, exam_id: str) -> List[dict]:
        """Pending submissions of an exam, each with the exam definition attached."""
        exam = await self.ledger.get_exam(exam_id)
        submissions = await self.ledger.get_pending_submissions(exam_id)
        exam_data = exam.to_ledger()
        return [{**s.to_ledger(), "exam": exam_data} for s in submissions]

    async def auto_evaluate(self, submission_id: str) -> Tuple[PendingSubmission, ExamDefinition, AutoEvalResult]:
        submission = await self.ledger.get_submission(submission_id)
        exam = await self.ledger.get_exam(submission.exam_id)
        result = auto_evaluator.evaluate_exam(exam.questions, submission.answers)
        if result.manual_grading:
            log_with_context(logger, "INFO", "Submission needs manual grading",
                             context={"submission_id": submission_id, "exam_id": submission.exam_id},
                             extra_data={"manual_grading": result.manual_grading})
        return submission, exam, result

    async def publish_evaluation(self, evaluator_wallet: str, submission_id: str,
                                 manual_scores: Optional[Mapping[str, Any]] = None,
                                 feedback: str = "") -> PublishedResult:
        """
        Merge scores and store one final result keyed by both FINAL_HASHes.

        Raises:
            PrivacyViolation: the evaluator wallet was found in the result record
            LedgerReadError / LedgerWriteError: propagated from the ledger
        """
        submission, exam, auto_result = await self.auto_evaluate(submission_id)
        final = auto_evaluator.merge_final_score(auto_result, manual_scores)

        evaluator_identity = self.identity.generate_exam_identity(
            evaluator_wallet, evaluator_exam_key(submission_id))

        record = ResultRecord(
            submission_id=submission_id,
            exam_id=submission.exam_id,
            student_final_hash=submission.final_hash,
            evaluator_final_hash=evaluator_identity.final_hash,
            score=final.total_score,
            max_score=final.max_score,
            percentage=final.percentage,
            passed=auto_evaluator.is_passing(final.percentage, exam.pass_percentage),
            feedback=feedback or "",
            question_scores=final.question_scores,
        )

        try:
            self.identity.enforce_privacy(record, evaluator_wallet)
        except PrivacyViolation:
            log_with_context(logger, "ERROR", "Result publication blocked by privacy audit",
                             context={"submission_id": submission_id})
            raise

        result_id = await self.ledger.store_result(record)

        log_with_context(logger, "INFO",
                         "Evaluation published: {}/{} ({}%)".format(
                             record.score, record.max_score, record.percentage),
                         context={
                             "submission_id": submission_id,
                             "result_id": result_id,
                             "student_final_hash": short_hash(record.student_final_hash),
                             "evaluator_final_hash": short_hash(record.evaluator_final_hash),
                         },
                         extra_data={"passed": record.passed})
        return PublishedResult(result_id=result_id, record=record)
