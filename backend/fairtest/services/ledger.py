"""
Ledger collaborator - where exams, anonymized submissions and results live.

The pipeline only depends on the async `Ledger` interface. Two adapters:
- SqlLedger: reference ledger on SQLAlchemy tables (exams, submissions, results)
- HttpLedger: client for a remote ledger service over httpx

Adapters translate their own failures into LedgerWriteError / LedgerReadError
(RecordNotFound for unknown ids), including malformed responses. Nothing here
retries; retry policy belongs to the caller.

SqlLedger uses synchronous sessions, so every database round trip runs in the
threadpool and never on the event loop.
"""

import json
import os
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Mapping, Optional

import httpx
from fastapi.concurrency import run_in_threadpool
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from fairtest.errors import LedgerReadError, LedgerWriteError, RecordNotFound
from fairtest.logging_config import get_logger, log_with_context, short_hash
from fairtest.models.exam import Exam
from fairtest.models.result import Result
from fairtest.models.submission import Submission
from fairtest.schemas import ExamDefinition, PendingSubmission, ResultRecord, SubmissionPayload

logger = get_logger("ledger")

LEDGER_URL = os.getenv("FAIRTEST_LEDGER_URL", "http://localhost:9000")
LEDGER_TIMEOUT = float(os.getenv("FAIRTEST_LEDGER_TIMEOUT", "30"))


class Ledger(ABC):
    """Async interface to the external ledger."""

    @abstractmethod
    async def store_exam(self, exam: ExamDefinition) -> str:
        ...

    @abstractmethod
    async def get_exam(self, exam_id: str) -> ExamDefinition:
        ...

    @abstractmethod
    async def store_submission(self, payload: SubmissionPayload, answers: Mapping[str, Any],
                               time_taken: Optional[float] = None) -> str:
        ...

    @abstractmethod
    async def get_submission(self, submission_id: str) -> PendingSubmission:
        ...

    @abstractmethod
    async def get_pending_submissions(self, exam_id: str) -> List[PendingSubmission]:
        ...

    @abstractmethod
    async def store_result(self, record: ResultRecord) -> str:
        ...

    @abstractmethod
    async def get_student_results(self, final_hash: str) -> List[dict]:
        ...

    @abstractmethod
    async def get_exam_stats(self, exam_id: str) -> dict:
        ...

    async def aclose(self):
        """Release connections held by the adapter. No-op by default."""


# ── SQLAlchemy reference ledger ──────────────────────────────

def _exam_definition(exam: Exam) -> ExamDefinition:
    return ExamDefinition(
        exam_id=exam.id,
        title=exam.title,
        description=exam.description or "",
        questions=exam.questions_list,
        pass_percentage=exam.pass_percentage,
        total_marks=exam.total_marks,
    )


def _pending_submission(submission: Submission) -> PendingSubmission:
    return PendingSubmission(
        submission_id=submission.id,
        exam_id=submission.exam_id,
        final_hash=submission.final_hash,
        answer_hash=submission.answer_hash,
        answers=submission.answers_dict,
        time_taken=submission.time_taken,
        status=submission.status,
    )


def _result_dict(result: Result) -> dict:
    return {
        "resultId": result.id,
        "submissionId": result.submission_id,
        "examId": result.exam_id,
        "studentFinalHash": result.student_final_hash,
        "evaluatorFinalHash": result.evaluator_final_hash,
        "score": float(result.score),
        "maxScore": float(result.max_score),
        "percentage": result.percentage,
        "passed": bool(result.passed),
        "feedback": result.feedback,
        "questionScores": result.question_scores_list,
        "evaluatedAt": result.evaluated_at.isoformat() if result.evaluated_at else None,
    }


class SqlLedger(Ledger):
    """
    Ledger backed by SQLAlchemy tables.

    The async methods hand the blocking session work (the `_sync` methods)
    to the threadpool.

    Args:
        session_factory: Callable returning a new Session (normally SessionLocal)
    """

    def __init__(self, session_factory: Callable[[], Session]):
        self._session_factory = session_factory

    async def store_exam(self, exam: ExamDefinition) -> str:
        return await run_in_threadpool(self._store_exam_sync, exam)

    async def get_exam(self, exam_id: str) -> ExamDefinition:
        return await run_in_threadpool(self._get_exam_sync, exam_id)

    async def store_submission(self, payload: SubmissionPayload, answers: Mapping[str, Any],
                               time_taken: Optional[float] = None) -> str:
        return await run_in_threadpool(self._store_submission_sync, payload, answers, time_taken)

    async def get_submission(self, submission_id: str) -> PendingSubmission:
        return await run_in_threadpool(self._get_submission_sync, submission_id)

    async def get_pending_submissions(self, exam_id: str) -> List[PendingSubmission]:
        return await run_in_threadpool(self._get_pending_submissions_sync, exam_id)

    async def store_result(self, record: ResultRecord) -> str:
        return await run_in_threadpool(self._store_result_sync, record)

    async def get_student_results(self, final_hash: str) -> List[dict]:
        return await run_in_threadpool(self._get_student_results_sync, final_hash)

    async def get_exam_stats(self, exam_id: str) -> dict:
        return await run_in_threadpool(self._get_exam_stats_sync, exam_id)

    # ── Session work ─────────────────────────────────────────

    def _store_exam_sync(self, exam: ExamDefinition) -> str:
        db = self._session_factory()
        try:
            record = Exam(
                title=exam.title,
                description=exam.description,
                questions=json.dumps([q.model_dump(by_alias=True, mode="json") for q in exam.questions]),
                pass_percentage=exam.pass_percentage,
                total_marks=exam.total_marks,
            )
            if exam.exam_id:
                record.id = exam.exam_id
            db.add(record)
            db.commit()
            exam_id = record.id
        except SQLAlchemyError as e:
            db.rollback()
            log_with_context(logger, "ERROR", "Failed to store exam: {}".format(type(e).__name__))
            raise LedgerWriteError("Storing the exam on the ledger failed.") from e
        finally:
            db.close()

        log_with_context(logger, "INFO", "Exam stored: {}".format(exam.title),
                         context={"exam_id": exam_id},
                         extra_data={"questions": len(exam.questions), "total_marks": exam.total_marks})
        return exam_id

    def _get_exam_sync(self, exam_id: str) -> ExamDefinition:
        db = self._session_factory()
        try:
            exam = db.get(Exam, exam_id)
            if not exam:
                raise RecordNotFound("Exam {} not found on the ledger.".format(exam_id))
            return _exam_definition(exam)
        except SQLAlchemyError as e:
            raise LedgerReadError("Reading exam {} failed.".format(exam_id)) from e
        finally:
            db.close()

    def _store_submission_sync(self, payload: SubmissionPayload, answers: Mapping[str, Any],
                               time_taken: Optional[float]) -> str:
        db = self._session_factory()
        try:
            if not db.get(Exam, payload.exam_id):
                raise RecordNotFound("Exam {} not found on the ledger.".format(payload.exam_id))
            submission = Submission(
                exam_id=payload.exam_id,
                final_hash=payload.final_hash,
                answer_hash=payload.answer_hash,
                answers=json.dumps(dict(answers or {}), default=str),
                time_taken=time_taken,
                client_timestamp=payload.timestamp,
                status="pending_evaluation",
            )
            db.add(submission)
            db.commit()
            submission_id = submission.id
        except SQLAlchemyError as e:
            db.rollback()
            log_with_context(logger, "ERROR", "Failed to store submission: {}".format(type(e).__name__),
                             context={"exam_id": payload.exam_id})
            raise LedgerWriteError() from e
        finally:
            db.close()

        log_with_context(logger, "INFO", "Submission stored",
                         context={
                             "submission_id": submission_id,
                             "exam_id": payload.exam_id,
                             "final_hash": short_hash(payload.final_hash),
                         })
        return submission_id

    def _get_submission_sync(self, submission_id: str) -> PendingSubmission:
        db = self._session_factory()
        try:
            submission = db.get(Submission, submission_id)
            if not submission:
                raise RecordNotFound("Submission {} not found on the ledger.".format(submission_id))
            return _pending_submission(submission)
        except SQLAlchemyError as e:
            raise LedgerReadError() from e
        finally:
            db.close()

    def _get_pending_submissions_sync(self, exam_id: str) -> List[PendingSubmission]:
        db = self._session_factory()
        try:
            rows = db.query(Submission).filter(
                Submission.exam_id == exam_id,
                Submission.status == "pending_evaluation"
            ).order_by(Submission.submitted_at).all()
            return [_pending_submission(s) for s in rows]
        except SQLAlchemyError as e:
            raise LedgerReadError() from e
        finally:
            db.close()

    def _store_result_sync(self, record: ResultRecord) -> str:
        db = self._session_factory()
        try:
            submission = db.get(Submission, record.submission_id)
            if not submission:
                raise RecordNotFound("Submission {} not found on the ledger.".format(record.submission_id))
            result = Result(
                submission_id=record.submission_id,
                exam_id=record.exam_id,
                student_final_hash=record.student_final_hash,
                evaluator_final_hash=record.evaluator_final_hash,
                score=record.score,
                max_score=record.max_score,
                percentage=record.percentage,
                passed=record.passed,
                feedback=record.feedback,
                question_scores=json.dumps([q.model_dump(by_alias=True, mode="json")
                                            for q in record.question_scores]),
            )
            db.add(result)
            submission.status = "evaluated"
            db.commit()
            result_id = result.id
        except SQLAlchemyError as e:
            db.rollback()
            log_with_context(logger, "ERROR", "Failed to store result: {}".format(type(e).__name__),
                             context={"submission_id": record.submission_id})
            raise LedgerWriteError() from e
        finally:
            db.close()

        log_with_context(logger, "INFO",
                         "Result stored: {}/{} ({}%)".format(record.score, record.max_score, record.percentage),
                         context={
                             "result_id": result_id,
                             "submission_id": record.submission_id,
                             "student_final_hash": short_hash(record.student_final_hash),
                             "evaluator_final_hash": short_hash(record.evaluator_final_hash),
                         })
        return result_id

    def _get_student_results_sync(self, final_hash: str) -> List[dict]:
        db = self._session_factory()
        try:
            rows = db.query(Result).filter(
                Result.student_final_hash == final_hash
            ).order_by(Result.evaluated_at).all()
            return [_result_dict(r) for r in rows]
        except SQLAlchemyError as e:
            raise LedgerReadError() from e
        finally:
            db.close()

    def _get_exam_stats_sync(self, exam_id: str) -> dict:
        db = self._session_factory()
        try:
            total_submissions = db.query(Submission).filter(Submission.exam_id == exam_id).count()
            results = db.query(Result).filter(Result.exam_id == exam_id).all()
        except SQLAlchemyError as e:
            raise LedgerReadError() from e
        finally:
            db.close()

        evaluated = len(results)
        passed = len([r for r in results if r.passed])
        avg_score = sum(r.percentage for r in results) / evaluated if evaluated else 0
        return {
            "totalSubmissions": total_submissions,
            "evaluated": evaluated,
            "pending": total_submissions - evaluated,
            "passed": passed,
            "failed": evaluated - passed,
            "avgScore": round(avg_score, 1),
        }


# ── Remote ledger over HTTP ──────────────────────────────────

def _field(name: str) -> Callable[[Any], Any]:
    def parse(data):
        return data[name]
    return parse


def _list_of(parse_item: Callable[[Any], Any]) -> Callable[[Any], list]:
    def parse(data):
        if not isinstance(data, list):
            raise TypeError("expected a JSON array, got {}".format(type(data).__name__))
        return [parse_item(item) for item in data]
    return parse


def _json_object(data: Any) -> dict:
    if not isinstance(data, dict):
        raise TypeError("expected a JSON object, got {}".format(type(data).__name__))
    return data


# Everything a response body can do wrong once it has arrived
_MALFORMED_RESPONSE = (ValueError, KeyError, TypeError, ValidationError)


class HttpLedger(Ledger):
    """
    Ledger client for a remote ledger service.

    Endpoints (JSON, camelCase):
        POST /exams                     -> {"examId": ...}
        GET  /exams/{id}
        GET  /exams/{id}/stats
        GET  /exams/{id}/submissions?status=pending_evaluation
        POST /submissions               -> {"submissionId": ...}
        GET  /submissions/{id}
        POST /results                   -> {"resultId": ...}
        GET  /results?studentFinalHash=...

    Response bodies are parsed inside the same error translation as the
    request itself: a missing id or an invalid record is a ledger error.
    """

    def __init__(self, base_url: str = LEDGER_URL, timeout: float = LEDGER_TIMEOUT,
                 client: httpx.AsyncClient = None):
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)

    async def aclose(self):
        await self._client.aclose()

    async def _write(self, path: str, body: dict, parse: Callable[[Any], Any]) -> Any:
        try:
            response = await self._client.post(path, json=body)
            if response.status_code == 404:
                raise RecordNotFound(response.text or None)
            response.raise_for_status()
            return parse(response.json())
        except (httpx.HTTPError,) + _MALFORMED_RESPONSE as e:
            log_with_context(logger, "ERROR", "Ledger write to {} failed: {}".format(path, type(e).__name__))
            raise LedgerWriteError() from e

    async def _read(self, path: str, parse: Callable[[Any], Any],
                    params: Dict[str, Any] = None) -> Any:
        try:
            response = await self._client.get(path, params=params)
            if response.status_code == 404:
                raise RecordNotFound()
            response.raise_for_status()
            return parse(response.json())
        except (httpx.HTTPError,) + _MALFORMED_RESPONSE as e:
            log_with_context(logger, "ERROR", "Ledger read from {} failed: {}".format(path, type(e).__name__))
            raise LedgerReadError() from e

    async def store_exam(self, exam: ExamDefinition) -> str:
        return await self._write("/exams", exam.to_ledger(), _field("examId"))

    async def get_exam(self, exam_id: str) -> ExamDefinition:
        return await self._read(f"/exams/{exam_id}", ExamDefinition.model_validate)

    async def store_submission(self, payload: SubmissionPayload, answers: Mapping[str, Any],
                               time_taken: Optional[float] = None) -> str:
        body = {**payload.to_ledger(), "answers": dict(answers or {}), "timeTaken": time_taken}
        submission_id = await self._write("/submissions", body, _field("submissionId"))
        log_with_context(logger, "INFO", "Submission sent to remote ledger",
                         context={"exam_id": payload.exam_id, "final_hash": short_hash(payload.final_hash)})
        return submission_id

    async def get_submission(self, submission_id: str) -> PendingSubmission:
        return await self._read(f"/submissions/{submission_id}", PendingSubmission.model_validate)

    async def get_pending_submissions(self, exam_id: str) -> List[PendingSubmission]:
        return await self._read(f"/exams/{exam_id}/submissions",
                                _list_of(PendingSubmission.model_validate),
                                params={"status": "pending_evaluation"})

    async def store_result(self, record: ResultRecord) -> str:
        return await self._write("/results", record.to_ledger(), _field("resultId"))

    async def get_student_results(self, final_hash: str) -> List[dict]:
        return await self._read("/results", _list_of(_json_object),
                                params={"studentFinalHash": final_hash})

    async def get_exam_stats(self, exam_id: str) -> dict:
        return await self._read(f"/exams/{exam_id}/stats", _json_object)
