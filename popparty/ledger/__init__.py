"""
PoP Party Ledger Access
"""

from popparty.ledger.transaction import (
    InstructionKind,
    Signer,
    Argument,
    Instruction,
    ClientTransaction,
    verify_identity_signature,
)
from popparty.ledger.proof import Proof, state_leaf
from popparty.ledger.client import LedgerClient, TransactionOutcome, fetch_value
from popparty.ledger.access import (
    AccessRule,
    Credential,
    AccessControlResolver,
    CredentialResolver,
    LedgerAccessResolver,
    LedgerCredentialResolver,
    credential_instance_id,
    resolve_organizer_keys,
    rule_instance_id,
)
from popparty.ledger.contract import PopPartyContract, StateEntry, coin_instance_id, rule_coin_id
from popparty.ledger.memory import MemoryLedger
from popparty.ledger.rpc import RPCLedgerClient

__all__ = [
    # Transactions
    "InstructionKind",
    "Signer",
    "Argument",
    "Instruction",
    "ClientTransaction",
    "verify_identity_signature",
    # Proofs
    "Proof",
    "state_leaf",
    # Client
    "LedgerClient",
    "TransactionOutcome",
    "fetch_value",
    # Access control
    "AccessRule",
    "Credential",
    "AccessControlResolver",
    "CredentialResolver",
    "LedgerAccessResolver",
    "LedgerCredentialResolver",
    "credential_instance_id",
    "resolve_organizer_keys",
    "rule_instance_id",
    # Contract and ledgers
    "PopPartyContract",
    "StateEntry",
    "coin_instance_id",
    "rule_coin_id",
    "MemoryLedger",
    "RPCLedgerClient",
]
