"""
Ledger client contract.

The party state machine only talks to the ledger through this interface.
Retry and timeout policy for awaiting inclusion belongs to implementations.
"""

from __future__ import annotations
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Sequence

from popparty.core.types import Hash, IdentityRef, InstanceID
from popparty.errors import ProofMismatch
from popparty.ledger.proof import Proof
from popparty.ledger.transaction import ClientTransaction


@dataclass(frozen=True)
class TransactionOutcome:
    """Result of a committed transaction."""
    tx_hash: Hash
    block_index: int


class LedgerClient(ABC):
    """Asynchronous access to the ledger."""

    @abstractmethod
    async def submit_and_await(self, transaction: ClientTransaction) -> TransactionOutcome:
        """
        Submit transaction and wait until it is included.

        Raises:
            LedgerSubmissionFailed: If the ledger rejects or never includes it
        """

    @abstractmethod
    async def get_proof(self, instance_id: InstanceID) -> Proof:
        """Fetch the latest proof for instance_id (possibly of absence)."""

    @abstractmethod
    async def get_signer_counters(self, identities: Sequence[IdentityRef]) -> List[int]:
        """Last counter used by each identity (0 if never used)."""


async def fetch_value(
    ledger: LedgerClient,
    instance_id: InstanceID,
    contract_id: str,
) -> Proof:
    """
    Fetch a proof and check it proves an instance of contract_id.

    Raises:
        ProofMismatch: If the proof does not match
    """
    proof = await ledger.get_proof(instance_id)
    if not proof.matches(instance_id):
        raise ProofMismatch(instance_id.data, "no matching inclusion proof")
    if proof.contract_id != contract_id:
        raise ProofMismatch(
            instance_id.data,
            f"instance holds {proof.contract_id!r}, expected {contract_id!r}"
        )
    return proof
