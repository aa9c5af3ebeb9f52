import os

# In-memory database for anything that imports fairtest.database
os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest
from sqlalchemy.orm import sessionmaker

from fairtest.database import build_engine, create_tables
from fairtest.schemas import ExamDefinition, Question
from fairtest.services.assembler import SubmissionAssembler
from fairtest.services.identity import AnonymousIdentityManager
from fairtest.services.identity_store import InMemoryIdentityStore, SqlIdentityStore
from fairtest.services.ledger import SqlLedger

WALLET = "0xAbC1234567890DeF1234567890aBcDeF12345678"


@pytest.fixture
def wallet():
    return WALLET


@pytest.fixture
def session_factory():
    """A fresh in-memory database per test."""
    engine = build_engine("sqlite://")
    create_tables(bind=engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    yield factory
    engine.dispose()


@pytest.fixture
def memory_store():
    return InMemoryIdentityStore()


@pytest.fixture
def id_manager(memory_store):
    return AnonymousIdentityManager(store=memory_store)


@pytest.fixture
def sql_ledger(session_factory):
    return SqlLedger(session_factory)


@pytest.fixture
def assembler(session_factory, sql_ledger):
    identity = AnonymousIdentityManager(store=SqlIdentityStore(session_factory))
    return SubmissionAssembler(identity=identity, ledger=sql_ledger)


@pytest.fixture
def scenario_questions():
    """One MCQ and one short answer, 5 marks each."""
    return [
        Question(id="q1", type="mcq", text="Pick B", options=["A", "B", "C"], correct_answer="B", marks=5),
        Question(id="q2", type="short_answer", text="Explain", marks=5),
    ]


@pytest.fixture
def mixed_exam():
    return ExamDefinition(
        exam_id="exam-mixed",
        title="Mixed Exam",
        pass_percentage=60,
        questions=[
            Question(id="q1", type="mcq", correct_answer="B", marks=5),
            Question(id="q2", type="true_false", correct_answer=True, marks=2),
            Question(id="q3", type="multiple_correct", correct_answers=["A", "C"], marks=4),
            Question(id="q4", type="numeric", correct_answer=3.14, tolerance=0.01, marks=4),
            Question(id="q5", type="essay", marks=10),
        ],
    )
