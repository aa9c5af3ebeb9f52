import asyncio
import json
import time

import httpx
import pytest
from unittest.mock import MagicMock
from sqlalchemy.exc import OperationalError

from fairtest.errors import LedgerReadError, LedgerWriteError, RecordNotFound
from fairtest.schemas import ExamDefinition, QuestionScore, ResultRecord, SubmissionPayload
from fairtest.services.ledger import HttpLedger, Ledger, SqlLedger

FINAL_HASH = "f" * 64
EVALUATOR_HASH = "e" * 64


def _payload(exam_id, final_hash=FINAL_HASH):
    return SubmissionPayload(final_hash=final_hash, exam_id=exam_id, answer_hash="a" * 64,
                             timestamp=1700000000000)


def _record(submission_id, exam_id, percentage=90, passed=True):
    return ResultRecord(
        submission_id=submission_id,
        exam_id=exam_id,
        student_final_hash=FINAL_HASH,
        evaluator_final_hash=EVALUATOR_HASH,
        score=percentage / 10,
        max_score=10,
        percentage=percentage,
        passed=passed,
        feedback="Good work",
        question_scores=[QuestionScore(question_id="q1", score=5, max_marks=5, correct=True, auto_graded=True)],
    )


# ── SqlLedger ────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_exam_round_trip(sql_ledger, mixed_exam):
    exam_id = await sql_ledger.store_exam(mixed_exam)
    stored = await sql_ledger.get_exam(exam_id)

    assert exam_id == "exam-mixed"
    assert stored.title == "Mixed Exam"
    assert stored.pass_percentage == 60
    assert stored.total_marks == 25
    assert [q.id for q in stored.questions] == ["q1", "q2", "q3", "q4", "q5"]
    assert stored.questions[3].tolerance == 0.01


@pytest.mark.asyncio
async def test_exam_gets_generated_id(sql_ledger, scenario_questions):
    exam_id = await sql_ledger.store_exam(ExamDefinition(title="Quiz", questions=scenario_questions))
    assert exam_id.startswith("exam_")


@pytest.mark.asyncio
async def test_unknown_exam_raises_not_found(sql_ledger):
    with pytest.raises(RecordNotFound):
        await sql_ledger.get_exam("missing")


@pytest.mark.asyncio
async def test_submission_for_unknown_exam_is_rejected(sql_ledger):
    with pytest.raises(RecordNotFound):
        await sql_ledger.store_submission(_payload("missing"), {"q1": "B"})


@pytest.mark.asyncio
async def test_submission_round_trip(sql_ledger, mixed_exam):
    await sql_ledger.store_exam(mixed_exam)
    submission_id = await sql_ledger.store_submission(_payload("exam-mixed"), {"q1": "B"}, time_taken=42.5)

    submission = await sql_ledger.get_submission(submission_id)
    assert submission.final_hash == FINAL_HASH
    assert submission.answers == {"q1": "B"}
    assert submission.time_taken == 42.5
    assert submission.status == "pending_evaluation"

    pending = await sql_ledger.get_pending_submissions("exam-mixed")
    assert [p.submission_id for p in pending] == [submission_id]


@pytest.mark.asyncio
async def test_store_result_marks_submission_evaluated(sql_ledger, mixed_exam):
    await sql_ledger.store_exam(mixed_exam)
    submission_id = await sql_ledger.store_submission(_payload("exam-mixed"), {"q1": "B"})

    result_id = await sql_ledger.store_result(_record(submission_id, "exam-mixed"))

    assert result_id.startswith("result_")
    assert await sql_ledger.get_pending_submissions("exam-mixed") == []
    assert (await sql_ledger.get_submission(submission_id)).status == "evaluated"

    results = await sql_ledger.get_student_results(FINAL_HASH)
    assert len(results) == 1
    assert results[0]["studentFinalHash"] == FINAL_HASH
    assert results[0]["evaluatorFinalHash"] == EVALUATOR_HASH
    assert results[0]["questionScores"][0]["questionId"] == "q1"


@pytest.mark.asyncio
async def test_result_for_unknown_submission_is_rejected(sql_ledger):
    with pytest.raises(RecordNotFound):
        await sql_ledger.store_result(_record("sub_missing", "exam-mixed"))


@pytest.mark.asyncio
async def test_second_result_for_same_submission_fails(sql_ledger, mixed_exam):
    await sql_ledger.store_exam(mixed_exam)
    submission_id = await sql_ledger.store_submission(_payload("exam-mixed"), {})
    await sql_ledger.store_result(_record(submission_id, "exam-mixed"))

    with pytest.raises(LedgerWriteError):
        await sql_ledger.store_result(_record(submission_id, "exam-mixed"))


@pytest.mark.asyncio
async def test_exam_stats(sql_ledger, mixed_exam):
    await sql_ledger.store_exam(mixed_exam)
    first = await sql_ledger.store_submission(_payload("exam-mixed"), {})
    second = await sql_ledger.store_submission(_payload("exam-mixed", "9" * 64), {})
    await sql_ledger.store_submission(_payload("exam-mixed", "8" * 64), {})

    await sql_ledger.store_result(_record(first, "exam-mixed", percentage=90, passed=True))
    await sql_ledger.store_result(_record(second, "exam-mixed", percentage=35, passed=False))

    stats = await sql_ledger.get_exam_stats("exam-mixed")
    assert stats == {
        "totalSubmissions": 3,
        "evaluated": 2,
        "pending": 1,
        "passed": 1,
        "failed": 1,
        "avgScore": 62.5,
    }


@pytest.mark.asyncio
async def test_empty_exam_stats(sql_ledger):
    stats = await sql_ledger.get_exam_stats("exam-none")
    assert stats["totalSubmissions"] == 0
    assert stats["avgScore"] == 0


@pytest.mark.asyncio
async def test_database_errors_become_ledger_errors():
    session = MagicMock()
    session.get.side_effect = OperationalError("SELECT", {}, Exception("database is locked"))
    ledger = SqlLedger(lambda: session)

    with pytest.raises(LedgerReadError):
        await ledger.get_submission("sub_1")
    with pytest.raises(LedgerWriteError):
        await ledger.store_submission(_payload("exam-1"), {})

    session.rollback.assert_called_once()
    assert session.close.call_count == 2


# ── HttpLedger ───────────────────────────────────────────────

def _http_ledger(handler):
    client = httpx.AsyncClient(base_url="http://ledger.test", transport=httpx.MockTransport(handler))
    return HttpLedger(client=client)


@pytest.mark.asyncio
async def test_http_submission_body_carries_payload_and_answers():
    captured = {}

    def handler(request):
        captured["path"] = request.url.path
        captured["body"] = json.loads(request.content)
        return httpx.Response(201, json={"submissionId": "sub_remote"})

    ledger = _http_ledger(handler)
    submission_id = await ledger.store_submission(_payload("exam-1"), {"q1": "B"}, 12.0)
    await ledger.aclose()

    assert submission_id == "sub_remote"
    assert captured["path"] == "/submissions"
    assert captured["body"] == {
        "finalHash": FINAL_HASH,
        "examId": "exam-1",
        "answerHash": "a" * 64,
        "timestamp": 1700000000000,
        "answers": {"q1": "B"},
        "timeTaken": 12.0,
    }


@pytest.mark.asyncio
async def test_http_results_query_by_final_hash():
    def handler(request):
        assert request.url.path == "/results"
        assert request.url.params["studentFinalHash"] == FINAL_HASH
        return httpx.Response(200, json=[{"resultId": "r1", "percentage": 90}])

    ledger = _http_ledger(handler)
    results = await ledger.get_student_results(FINAL_HASH)
    assert results == [{"resultId": "r1", "percentage": 90}]


@pytest.mark.asyncio
async def test_http_exam_is_validated():
    def handler(request):
        return httpx.Response(200, json={
            "examId": "exam-1",
            "title": "Remote",
            "questions": [{"id": "q1", "type": "mcq", "correctAnswer": "B", "marks": 5}],
        })

    exam = await _http_ledger(handler).get_exam("exam-1")
    assert exam.total_marks == 5
    assert exam.pass_percentage == 40


@pytest.mark.asyncio
async def test_http_404_raises_not_found():
    ledger = _http_ledger(lambda request: httpx.Response(404, text="no such submission"))

    with pytest.raises(RecordNotFound):
        await ledger.get_submission("sub_missing")
    with pytest.raises(RecordNotFound):
        await ledger.store_result(_record("sub_missing", "exam-1"))


@pytest.mark.asyncio
async def test_http_server_error_maps_to_ledger_errors():
    ledger = _http_ledger(lambda request: httpx.Response(500, json={"error": "boom"}))

    with pytest.raises(LedgerWriteError):
        await ledger.store_submission(_payload("exam-1"), {})
    with pytest.raises(LedgerReadError):
        await ledger.get_exam_stats("exam-1")


@pytest.mark.asyncio
async def test_http_connection_error_maps_to_write_error():
    def handler(request):
        raise httpx.ConnectError("ledger unreachable", request=request)

    with pytest.raises(LedgerWriteError):
        await _http_ledger(handler).store_exam(ExamDefinition(title="x"))


@pytest.mark.asyncio
async def test_http_missing_id_in_write_response():
    ledger = _http_ledger(lambda request: httpx.Response(200, json={"ok": True}))

    with pytest.raises(LedgerWriteError):
        await ledger.store_exam(ExamDefinition(title="x"))
    with pytest.raises(LedgerWriteError):
        await ledger.store_submission(_payload("exam-1"), {})
    with pytest.raises(LedgerWriteError):
        await ledger.store_result(_record("sub_1", "exam-1"))


@pytest.mark.asyncio
async def test_http_write_response_that_is_not_an_object():
    ledger = _http_ledger(lambda request: httpx.Response(200, json=["sub_1"]))

    with pytest.raises(LedgerWriteError):
        await ledger.store_submission(_payload("exam-1"), {})


@pytest.mark.asyncio
async def test_http_invalid_records_become_read_errors():
    def handler(request):
        if request.url.path == "/exams/e1":
            return httpx.Response(200, json={"questions": [{"id": "q"}]})
        if request.url.path == "/submissions/s1":
            return httpx.Response(200, json={"examId": "e1"})
        if request.url.path == "/exams/e1/submissions":
            return httpx.Response(200, json={"data": []})
        if request.url.path == "/results":
            return httpx.Response(200, json=["not a result"])
        return httpx.Response(200, json=[1, 2])

    ledger = _http_ledger(handler)

    with pytest.raises(LedgerReadError):
        await ledger.get_exam("e1")
    with pytest.raises(LedgerReadError):
        await ledger.get_submission("s1")
    with pytest.raises(LedgerReadError):
        await ledger.get_pending_submissions("e1")
    with pytest.raises(LedgerReadError):
        await ledger.get_student_results(FINAL_HASH)
    with pytest.raises(LedgerReadError):
        await ledger.get_exam_stats("e1")


@pytest.mark.asyncio
async def test_http_non_json_body_is_read_error():
    ledger = _http_ledger(lambda request: httpx.Response(200, text="<html>gateway</html>"))

    with pytest.raises(LedgerReadError):
        await ledger.get_exam("e1")


# ── Interface and event loop ─────────────────────────────────

def test_partial_ledger_cannot_be_built():
    class WriteOnlyLedger(Ledger):
        async def store_exam(self, exam):
            return "exam_1"

    with pytest.raises(TypeError):
        WriteOnlyLedger()


@pytest.mark.asyncio
async def test_slow_queries_do_not_block_the_event_loop():
    def slow_all():
        time.sleep(0.3)
        return []

    def slow_session():
        session = MagicMock()
        session.query.return_value.filter.return_value.order_by.return_value.all.side_effect = slow_all
        return session

    ledger = SqlLedger(slow_session)
    stop = asyncio.Event()
    gaps = []

    async def ticker():
        last = time.monotonic()
        while not stop.is_set():
            await asyncio.sleep(0.02)
            now = time.monotonic()
            gaps.append(now - last)
            last = now

    tick = asyncio.create_task(ticker())
    started = time.monotonic()
    results = await asyncio.gather(
        ledger.get_pending_submissions("exam-1"),
        ledger.get_pending_submissions("exam-1"),
    )
    elapsed = time.monotonic() - started
    stop.set()
    await tick

    assert results == [[], []]
    # Both queries ran side by side in worker threads
    assert elapsed < 0.55
    assert max(gaps) < 0.2
