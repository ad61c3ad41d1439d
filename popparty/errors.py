"""
PoP Party Protocol Error Handling

All error codes and exception classes.
"""

from enum import IntEnum
from typing import Optional, Any


class ErrorCode(IntEnum):
    """Protocol error codes."""

    # 1xxx - Lifecycle errors
    ILLEGAL_STATE_TRANSITION = 1001
    NOT_FINALIZED = 1002
    STATE_CONSISTENCY = 1003

    # 2xxx - Candidate bookkeeping errors
    DUPLICATE_ATTENDEE = 2001
    UNKNOWN_ATTENDEE = 2002
    INVALID_ATTENDEE_KEY = 2003

    # 3xxx - External data errors
    PROOF_MISMATCH = 3001
    MISSING_CREDENTIAL = 3002

    # 4xxx - Ledger errors
    LEDGER_SUBMISSION_FAILED = 4001
    TRANSACTION_ALREADY_APPLIED = 4002

    # 5xxx - Cryptography errors
    RING_SIGNATURE = 5001

    # 6xxx - Contract errors
    CONTRACT_REJECTED = 6001

    # 7xxx - Configuration errors
    INVALID_CONFIG = 7001


class PopPartyError(Exception):
    """Base exception for all PoP party errors."""

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        details: Optional[Any] = None
    ):
        self.code = code
        self.message = message
        self.details = details
        super().__init__(f"[{code.value}] {message}")

    def to_dict(self) -> dict:
        """Convert to JSON-serializable dict for API responses."""
        result = {
            "code": self.code.value,
            "name": self.code.name,
            "message": self.message,
        }
        if self.details is not None:
            result["details"] = self.details
        return result


# ==============================================================================
# Lifecycle Errors (1xxx)
# ==============================================================================

class IllegalStateTransition(PopPartyError):
    """Operation is not valid in the party's current state. Caller bug."""

    def __init__(self, operation: str, state: Any):
        # state is None for a handle that was never loaded
        name = "not loaded" if state is None else getattr(state, "name", str(state))
        super().__init__(
            ErrorCode.ILLEGAL_STATE_TRANSITION,
            f"Cannot {operation} while party is {name}",
            {"operation": operation, "state": None if state is None else int(state)}
        )


class NotFinalized(PopPartyError):
    def __init__(self, operation: str):
        super().__init__(
            ErrorCode.NOT_FINALIZED,
            f"Cannot {operation}: party is not finalized",
            {"operation": operation}
        )


class StateConsistencyError(PopPartyError):
    """Ledger committed a transition but the refreshed state disagrees."""

    def __init__(self, operation: str, expected: Any, got: Any):
        super().__init__(
            ErrorCode.STATE_CONSISTENCY,
            f"{operation} committed but party reads back as "
            f"{getattr(got, 'name', got)} instead of {getattr(expected, 'name', expected)}",
            {"operation": operation, "expected": int(expected), "got": int(got)}
        )


# ==============================================================================
# Candidate Errors (2xxx)
# ==============================================================================

class DuplicateAttendee(PopPartyError):
    def __init__(self, key: bytes):
        super().__init__(
            ErrorCode.DUPLICATE_ATTENDEE,
            f"Attendee already present: {key.hex()[:16]}",
            {"key": key.hex()}
        )


class UnknownAttendee(PopPartyError):
    def __init__(self, key: bytes):
        super().__init__(
            ErrorCode.UNKNOWN_ATTENDEE,
            f"Unknown attendee: {key.hex()[:16]}",
            {"key": key.hex()}
        )


class InvalidAttendeeKey(PopPartyError):
    """Scanned key is not a point of the prime-order subgroup."""

    def __init__(self, key: bytes):
        super().__init__(
            ErrorCode.INVALID_ATTENDEE_KEY,
            f"Not a valid personhood key: {key.hex()[:16]}",
            {"key": key.hex()}
        )


# ==============================================================================
# External Data Errors (3xxx)
# ==============================================================================

class ProofMismatch(PopPartyError):
    def __init__(self, instance_id: bytes, reason: str = ""):
        msg = f"Proof does not match instance {instance_id.hex()[:16]}"
        if reason:
            msg += f": {reason}"
        super().__init__(
            ErrorCode.PROOF_MISMATCH,
            msg,
            {"instance_id": instance_id.hex()}
        )


class MissingCredential(PopPartyError):
    def __init__(self, identity: str, reason: str = ""):
        msg = f"No personhood credential for {identity}"
        if reason:
            msg += f": {reason}"
        super().__init__(
            ErrorCode.MISSING_CREDENTIAL,
            msg,
            {"identity": identity}
        )


# ==============================================================================
# Ledger Errors (4xxx)
# ==============================================================================

class LedgerSubmissionFailed(PopPartyError):
    def __init__(
        self,
        reason: str,
        tx_digest: Optional[bytes] = None,
        code: ErrorCode = ErrorCode.LEDGER_SUBMISSION_FAILED,
    ):
        self.reason = reason
        details = {"reason": reason}
        if tx_digest is not None:
            details["tx"] = tx_digest.hex()
        super().__init__(code, f"Ledger rejected transaction: {reason}", details)


class TransactionAlreadyApplied(LedgerSubmissionFailed):
    """The exact transaction was committed earlier, in block block_index."""

    def __init__(self, tx_digest: bytes, block_index: int):
        super().__init__(
            "transaction already applied",
            tx_digest,
            ErrorCode.TRANSACTION_ALREADY_APPLIED,
        )
        self.block_index = block_index
        self.details["block_index"] = block_index


# ==============================================================================
# Cryptography Errors (5xxx)
# ==============================================================================

class RingSignatureError(PopPartyError):
    def __init__(self, message: str):
        super().__init__(ErrorCode.RING_SIGNATURE, message)


# ==============================================================================
# Contract Errors (6xxx)
# ==============================================================================

class ContractError(PopPartyError):
    """Raised by ledger-side contracts when an instruction is rejected."""

    def __init__(self, message: str):
        super().__init__(ErrorCode.CONTRACT_REJECTED, message)


# ==============================================================================
# Configuration Errors (7xxx)
# ==============================================================================

class ConfigError(PopPartyError):
    def __init__(self, errors: list):
        super().__init__(
            ErrorCode.INVALID_CONFIG,
            "Invalid configuration: " + "; ".join(errors),
            {"errors": list(errors)}
        )
