"""
Shared FastAPI dependencies.

One SubmissionAssembler per process: this service runs on the student's or
evaluator's own device, so its identity store is the device-local table.
"""

import os
from functools import lru_cache

from fairtest.database import SessionLocal
from fairtest.services.assembler import SubmissionAssembler
from fairtest.services.identity import AnonymousIdentityManager
from fairtest.services.identity_store import SqlIdentityStore
from fairtest.services.ledger import HttpLedger, Ledger, SqlLedger

LEDGER_BACKEND = os.getenv("FAIRTEST_LEDGER_BACKEND", "sql").lower()


def build_ledger(backend: str = LEDGER_BACKEND) -> Ledger:
    if backend == "http":
        return HttpLedger()
    if backend == "sql":
        return SqlLedger(SessionLocal)
    raise ValueError("FAIRTEST_LEDGER_BACKEND must be 'sql' or 'http', got '{}'".format(backend))


@lru_cache(maxsize=1)
def get_assembler() -> SubmissionAssembler:
    """FastAPI dependency returning the process-wide assembler."""
    identity = AnonymousIdentityManager(store=SqlIdentityStore(SessionLocal))
    return SubmissionAssembler(identity=identity, ledger=build_ledger())


async def close_assembler():
    """Close the cached assembler's ledger connections on application shutdown."""
    if get_assembler.cache_info().currsize:
        await get_assembler().ledger.aclose()
        get_assembler.cache_clear()
