"""
Error taxonomy for the anonymous identity and evaluation pipeline.

Every error carries a message that can be shown to the user as-is. The HTTP
layer maps each class to a status code in `fairtest.main`.

- EntropyUnavailable: fatal, no identity can be derived
- InvalidIdentity: caller passed something that is not a full exam identity
- PrivacyViolation: a wallet address was found in an outgoing ledger record
- StorageUnavailable: local identity storage failed (recoverable)
- LedgerWriteError / LedgerReadError: raised by ledger adapters, never retried here
"""


class FairTestError(Exception):
    """Base class for all pipeline errors."""

    default_message = "FairTest operation failed"

    def __init__(self, message: str = None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message


class EntropyUnavailable(FairTestError):
    default_message = (
        "Secure randomness is unavailable on this device, so an anonymous exam "
        "identity cannot be created. Use a platform with a working CSPRNG."
    )


class InvalidIdentity(FairTestError):
    default_message = (
        "A full exam identity (with finalHash) is required. Pass the object "
        "returned by generate_exam_identity, not a raw UID."
    )


class PrivacyViolation(FairTestError):
    default_message = (
        "Privacy audit failed: the wallet address was found in data bound for "
        "the ledger. The write was blocked."
    )


class StorageUnavailable(FairTestError):
    default_message = (
        "Local identity storage is unavailable. The exam can continue, but "
        "results will not be recoverable on this device later."
    )


class LedgerError(FairTestError):
    default_message = "Ledger operation failed"


class LedgerWriteError(LedgerError):
    default_message = "Writing to the ledger failed. The record was not stored."


class LedgerReadError(LedgerError):
    default_message = "Reading from the ledger failed."


class RecordNotFound(LedgerReadError):
    default_message = "The requested ledger record does not exist."
