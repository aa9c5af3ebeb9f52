"""
Anonymous Identity Manager - separates payment identity from exam identity.

LAYER 1 - PAYMENT IDENTITY (wallet address)
    Used only for payments. Kept in local state, never serialized into any
    record bound for the ledger.

LAYER 2 - EXAM IDENTITY (UID -> UID_HASH -> FINAL_HASH)
    UID is derived from fresh randomness, a timestamp and an independent salt,
    so it is not derived from the wallet at all and two calls for the same
    wallet/exam pair never collide. Only FINAL_HASH leaves the device.

The privacy audit is a last check run just before any ledger write: it
serializes the outgoing record and looks for the wallet address in it.
"""

import json
import os
import secrets
import time
from typing import Any, Callable, List, Mapping, Optional

from pydantic import BaseModel, ValidationError

from fairtest.errors import EntropyUnavailable, InvalidIdentity, PrivacyViolation, StorageUnavailable
from fairtest.logging_config import get_logger, log_with_context, short_hash
from fairtest.schemas import ExamIdentity, IdentitySeparation, PrivacyAudit, SubmissionPayload
from fairtest.services import hash_chain
from fairtest.services.identity_store import IdentityStore, InMemoryIdentityStore

logger = get_logger("identity")

IDENTITY_KEY_PREFIX = os.getenv("FAIRTEST_IDENTITY_PREFIX", "fairtest_uid_")

UID_RANDOM_BYTES = 32   # 256 bits of fresh randomness per identity
SALT_BYTES = 16         # independent salt, 128 bits


def _epoch_millis() -> int:
    return int(time.time() * 1000)


def _serialize(data: Any) -> str:
    """Serialize models or plain JSON-able values for the privacy audit."""
    if isinstance(data, BaseModel):
        return json.dumps(data.model_dump(by_alias=True, mode="json"), default=str)
    return json.dumps(data, default=str)


def _final_hash_of(identity: Any) -> Optional[str]:
    """FINAL_HASH of an identity object or mapping; None for anything else."""
    if isinstance(identity, ExamIdentity):
        value = identity.final_hash
    elif isinstance(identity, Mapping):
        value = identity.get("finalHash") or identity.get("final_hash")
    else:
        return None
    return value if isinstance(value, str) and value else None


class AnonymousIdentityManager:
    """
    Derives, persists and recovers anonymous exam identities.

    Args:
        store: Device-scoped key-value store for recoverable identities
        entropy: Callable returning n cryptographically secure random bytes
        clock: Callable returning the wall-clock time in epoch milliseconds
    """

    def __init__(self, store: IdentityStore = None,
                 entropy: Callable[[int], bytes] = secrets.token_bytes,
                 clock: Callable[[], int] = _epoch_millis,
                 key_prefix: str = IDENTITY_KEY_PREFIX):
        self.store = store if store is not None else InMemoryIdentityStore()
        self._entropy = entropy
        self._clock = clock
        self.key_prefix = key_prefix

    # ── Derivation ───────────────────────────────────────────

    def _random_bytes(self, length: int) -> bytes:
        try:
            data = self._entropy(length)
        except (OSError, NotImplementedError) as e:
            log_with_context(logger, "ERROR", "Entropy source failed: {}".format(type(e).__name__))
            raise EntropyUnavailable() from e
        if not isinstance(data, (bytes, bytearray)) or len(data) != length:
            log_with_context(logger, "ERROR", "Entropy source returned a short or invalid read",
                             extra_data={"requested": length})
            raise EntropyUnavailable()
        return bytes(data)

    def generate_exam_identity(self, wallet_address: str, exam_id: str) -> ExamIdentity:
        """
        Generate an anonymous exam identity.

        Process: random bytes + timestamp + salt -> digest -> UID
                 UID -> digest -> UID_HASH -> digest -> FINAL_HASH

        The wallet address is kept on the returned object for local use only
        and never takes part in the derivation.

        Raises:
            EntropyUnavailable: the random source failed
        """
        random_hex = self._random_bytes(UID_RANDOM_BYTES).hex()
        salt = self._random_bytes(SALT_BYTES).hex()
        timestamp = self._clock()

        uid = hash_chain.digest(random_hex + str(timestamp) + salt)
        uid_hash, final_hash = hash_chain.chain(uid, 2)

        log_with_context(logger, "INFO", "Exam identity generated",
                         context={"exam_id": exam_id, "final_hash": short_hash(final_hash)})

        return ExamIdentity(
            uid=uid,
            uid_hash=uid_hash,
            final_hash=final_hash,
            exam_id=exam_id,
            wallet_address=wallet_address,
            timestamp=timestamp,
            salt=salt,
        )

    # ── Local persistence ────────────────────────────────────

    def storage_key(self, exam_id: str) -> str:
        return f"{self.key_prefix}{exam_id}"

    def store_uid_locally(self, identity: ExamIdentity) -> bool:
        """
        Persist the identity for later result retrieval.

        Overwrites any prior identity for the same exam. The wallet address
        and salt are not stored.

        Returns:
            True when stored; False when storage is unavailable, in which case
            the identity is ephemeral and the caller should warn the user.
        """
        record = identity.to_local_record()
        try:
            self.store.put(self.storage_key(identity.exam_id), json.dumps(record))
        except StorageUnavailable:
            log_with_context(logger, "WARNING",
                             "Identity not persisted; results will not be recoverable on this device",
                             context={"exam_id": identity.exam_id})
            return False
        log_with_context(logger, "INFO", "Identity stored locally",
                         context={"exam_id": identity.exam_id, "final_hash": short_hash(identity.final_hash)})
        return True

    def recover_uid(self, exam_id: str) -> Optional[ExamIdentity]:
        """Look up a stored identity by exam id. Returns None on a miss."""
        try:
            raw = self.store.get(self.storage_key(exam_id))
        except StorageUnavailable:
            log_with_context(logger, "WARNING", "Identity storage unavailable during recovery",
                             context={"exam_id": exam_id})
            return None
        if raw is None:
            return None
        try:
            identity = ExamIdentity.model_validate(json.loads(raw))
        except (json.JSONDecodeError, TypeError, ValidationError):
            log_with_context(logger, "WARNING", "Stored identity is unreadable; ignoring it",
                             context={"exam_id": exam_id})
            return None
        log_with_context(logger, "DEBUG", "Identity recovered from local storage",
                         context={"exam_id": exam_id, "final_hash": short_hash(identity.final_hash)})
        return identity

    def list_local_identities(self) -> List[ExamIdentity]:
        """All identities held on this device."""
        try:
            keys = self.store.keys(self.key_prefix)
        except StorageUnavailable:
            log_with_context(logger, "WARNING", "Identity storage unavailable while listing identities")
            return []
        identities = []
        for key in keys:
            identity = self.recover_uid(key[len(self.key_prefix):])
            if identity is not None:
                identities.append(identity)
        return identities

    # ── Payload construction and audit ───────────────────────

    def create_submission_payload(self, identity: Any, exam_id: str, answers: Any) -> SubmissionPayload:
        """
        Build the anonymized payload for the ledger.

        Only FINAL_HASH, the exam id, the answer digest and a timestamp are
        included. No wallet, uid or uid_hash.

        Raises:
            InvalidIdentity: identity is not a full exam identity (for
                example a bare UID string)
        """
        final_hash = _final_hash_of(identity)
        if not final_hash:
            raise InvalidIdentity()

        payload = SubmissionPayload(
            final_hash=final_hash,
            exam_id=exam_id,
            answer_hash=hash_chain.digest_json(answers),
            timestamp=self._clock(),
        )

        log_with_context(logger, "INFO", "Submission payload created",
                         context={"exam_id": exam_id, "final_hash": short_hash(payload.final_hash)})
        return payload

    def audit_privacy(self, payload: Any, wallet_address: str) -> PrivacyAudit:
        """
        Check that the wallet address does not appear anywhere in `payload`.

        Comparison is case-insensitive so checksummed and lower-case forms of
        the same address are both caught.
        """
        if not wallet_address or not wallet_address.strip():
            raise ValueError("wallet_address is required for a privacy audit")

        data = _serialize(payload).lower()
        found = wallet_address.strip().lower() in data

        if found:
            log_with_context(logger, "ERROR", "Privacy audit FAILED: wallet address found in ledger data")
        else:
            log_with_context(logger, "DEBUG", "Privacy audit passed")
        return PrivacyAudit(passed=not found, found_in_data=found)

    def enforce_privacy(self, payload: Any, wallet_address: str) -> PrivacyAudit:
        """
        Run the privacy audit and block the write path when it fails.

        Raises:
            PrivacyViolation: the wallet address was found in the payload
        """
        audit = self.audit_privacy(payload, wallet_address)
        if not audit.passed:
            raise PrivacyViolation()
        return audit

    def verify_identity_separation(self, payment_data: Mapping, exam_data: Any) -> IdentitySeparation:
        """
        Diagnostic check: payment data carries the wallet, exam data does not.

        Used by verification tooling and tests only.
        """
        payment_str = _serialize(payment_data)
        exam_str = _serialize(exam_data).lower()

        payment_has_wallet = "wallet" in payment_str or "0x" in payment_str

        wallet = payment_data.get("wallet") if isinstance(payment_data, Mapping) else None
        exam_has_wallet = bool(wallet) and str(wallet).lower() in exam_str

        separated = payment_has_wallet and not exam_has_wallet
        log_with_context(logger, "INFO", "Identity separation checked",
                         extra_data={
                             "payment_has_wallet": payment_has_wallet,
                             "exam_has_wallet": exam_has_wallet,
                             "separated": separated,
                         })
        return IdentitySeparation(
            separated=separated,
            payment_has_wallet=payment_has_wallet,
            exam_has_wallet=exam_has_wallet,
        )
