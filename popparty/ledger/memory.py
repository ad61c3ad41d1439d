"""
In-process ledger.

Holds every instance in a dict, commits to them with a Merkle root and
applies transactions atomically: all instructions of a transaction take
effect together or none do. Used by the test-suite and for local
rehearsal of a party without a network.
"""

from __future__ import annotations
import asyncio
import logging
from typing import Dict, List, Mapping, Optional, Sequence

from popparty.constants import (
    ANONYMOUS_COMMANDS,
    CONTRACT_COIN,
    CONTRACT_CREDENTIAL,
    CONTRACT_DARC,
    CONTRACT_POP_PARTY,
)
from popparty.core.serialization import deserialize_u64, serialize_u64
from popparty.core.types import Hash, IdentityRef, InstanceID, PublicKey
from popparty.crypto.merkle import MerkleTree
from popparty.errors import ContractError, LedgerSubmissionFailed, TransactionAlreadyApplied
from popparty.ledger.access import AccessRule, Credential, credential_instance_id, rule_instance_id
from popparty.ledger.client import LedgerClient, TransactionOutcome
from popparty.ledger.contract import (
    ChangeKind,
    PopPartyContract,
    StateChange,
    StateEntry,
    coin_instance_id,
)
from popparty.ledger.proof import Proof, state_leaf
from popparty.ledger.transaction import (
    ClientTransaction,
    Instruction,
    InstructionKind,
    verify_identity_signature,
)

logger = logging.getLogger(__name__)


class MemoryLedger(LedgerClient):
    """
    Single-node ledger kept in memory.

    Authorization:
    - Signed instructions carry one signature per signer over the
      transaction digest, with counter == last counter + 1.
    - Every signer must be listed for the instruction's action in the rule
      governing the target instance (spawn: the rule the spawn is sent to).
    - Instructions without signers are accepted only for anonymous
      commands, which authorize themselves through their arguments.
    """

    def __init__(self):
        self._state: Dict[bytes, StateEntry] = {}
        self._counters: Dict[IdentityRef, int] = {}
        # Committed transaction digest -> block index
        self._applied: Dict[bytes, int] = {}
        self._lock = asyncio.Lock()
        self._block_index = 0
        self._keys: List[bytes] = []
        self._tree = MerkleTree([])
        self.contracts = {CONTRACT_POP_PARTY: PopPartyContract()}
        # Submissions seen, accepted or not
        self.submissions = 0

    # =========================================================================
    # Genesis helpers
    # =========================================================================

    def put_rule(
        self,
        rules: Mapping[str, Sequence[IdentityRef]],
        label: bytes = b"",
    ) -> InstanceID:
        """Store an access rule outside any transaction; returns its id."""
        rule = AccessRule(rules={action: tuple(ids) for action, ids in rules.items()})
        value = rule.serialize()
        rule_id = rule_instance_id(rule, label)
        self._put(rule_id, StateEntry(CONTRACT_DARC, value, rule_id.data))
        return rule_id

    def put_credential(
        self,
        identity: IdentityRef,
        public_key: PublicKey,
        rule_id: Optional[InstanceID] = None,
    ) -> InstanceID:
        """Store a personhood credential for identity; returns its id."""
        iid = credential_instance_id(identity)
        governing = rule_id.data if rule_id is not None else b""
        self._put(
            iid,
            StateEntry(CONTRACT_CREDENTIAL, Credential.personhood(public_key).serialize(), governing),
        )
        return iid

    def put_coin(
        self,
        owner: bytes,
        rule_id: Optional[InstanceID] = None,
        balance: int = 0,
    ) -> InstanceID:
        """Store a coin at coin_instance_id(owner); returns its id."""
        coin_id = coin_instance_id(owner)
        governing = rule_id.data if rule_id is not None else b""
        self._put(coin_id, StateEntry(CONTRACT_COIN, serialize_u64(balance), governing))
        return coin_id

    def coin_balance(self, coin_id: InstanceID) -> int:
        entry = self._state.get(coin_id.data)
        if entry is None or entry.contract_id != CONTRACT_COIN:
            return 0
        balance, _ = deserialize_u64(entry.value)
        return balance

    @property
    def block_index(self) -> int:
        return self._block_index

    @property
    def root(self) -> Hash:
        return self._tree.root

    def _put(self, instance_id: InstanceID, entry: StateEntry) -> None:
        self._state[instance_id.data] = entry
        self._rebuild()

    def _rebuild(self) -> None:
        self._keys = sorted(self._state)
        leaves = []
        for key in self._keys:
            entry = self._state[key]
            leaves.append(state_leaf(InstanceID(key), entry.contract_id, entry.value, entry.rule_id))
        self._tree = MerkleTree(leaves)

    # =========================================================================
    # LedgerClient
    # =========================================================================

    async def submit_and_await(self, transaction: ClientTransaction) -> TransactionOutcome:
        async with self._lock:
            self.submissions += 1
            digest = transaction.digest()

            if not transaction.instructions:
                raise LedgerSubmissionFailed("empty transaction", digest.data)
            if digest.data in self._applied:
                raise TransactionAlreadyApplied(digest.data, self._applied[digest.data])

            working = dict(self._state)
            counters = dict(self._counters)
            try:
                for inst in transaction.instructions:
                    self._authorize(working, counters, inst, digest)
                    for change in self._execute(working, inst):
                        self._apply_change(working, change)
            except ContractError as e:
                logger.warning(f"Rejected transaction {digest.hex()[:16]}: {e.message}")
                raise LedgerSubmissionFailed(e.message, digest.data) from e

            self._state = working
            self._counters = counters
            self._block_index += 1
            self._applied[digest.data] = self._block_index
            self._rebuild()

            logger.info(
                f"Committed transaction {digest.hex()[:16]} "
                f"({len(transaction.instructions)} instructions) in block {self._block_index}"
            )
            return TransactionOutcome(tx_hash=digest, block_index=self._block_index)

    async def get_proof(self, instance_id: InstanceID) -> Proof:
        entry = self._state.get(instance_id.data)
        if entry is None:
            return Proof.absent(instance_id, self._tree.root, self._block_index)

        index = self._keys.index(instance_id.data)
        return Proof(
            instance_id=instance_id,
            contract_id=entry.contract_id,
            value=entry.value,
            rule_id=entry.rule_id,
            root=self._tree.root,
            block_index=self._block_index,
            inclusion=self._tree.get_proof(index),
        )

    async def get_signer_counters(self, identities: Sequence[IdentityRef]) -> List[int]:
        return [self._counters.get(identity, 0) for identity in identities]

    # =========================================================================
    # Execution
    # =========================================================================

    @staticmethod
    def _authorize(
        state: Mapping[bytes, StateEntry],
        counters: Dict[IdentityRef, int],
        inst: Instruction,
        digest: Hash,
    ) -> None:
        if inst.is_anonymous:
            if inst.kind != InstructionKind.INVOKE or inst.command not in ANONYMOUS_COMMANDS:
                raise ContractError(f"{inst.action} needs at least one signer")
            return

        if len(inst.signer_identities) != len(inst.signer_counters):
            raise ContractError("each signer needs exactly one counter")
        if len(inst.signatures) != len(inst.signer_identities):
            raise ContractError("wrong number of signatures")

        if inst.kind == InstructionKind.SPAWN:
            rule_id = inst.instance_id.data
        else:
            target = state.get(inst.instance_id.data)
            if target is None:
                raise ContractError(f"instance {inst.instance_id.hex()[:16]} not found")
            rule_id = target.rule_id

        rule_entry = state.get(rule_id)
        if rule_entry is None or rule_entry.contract_id != CONTRACT_DARC:
            raise ContractError("governing access rule not found")
        rule = AccessRule.deserialize(rule_entry.value)

        for identity, counter, signature in zip(
            inst.signer_identities, inst.signer_counters, inst.signatures
        ):
            if not rule.allows(inst.action, identity):
                raise ContractError(f"{identity} is not allowed to {inst.action}")
            expected = counters.get(identity, 0) + 1
            if counter != expected:
                raise ContractError(
                    f"wrong counter for {identity}: got {counter}, expected {expected}"
                )
            if not verify_identity_signature(identity, digest.data, signature):
                raise ContractError(f"invalid signature by {identity}")
            counters[identity] = counter

    def _execute(self, state: Mapping[bytes, StateEntry], inst: Instruction) -> List[StateChange]:
        contract = self.contracts.get(inst.contract_id)
        if contract is None:
            raise ContractError(f"unknown contract {inst.contract_id!r}")

        if inst.kind == InstructionKind.SPAWN:
            return contract.spawn(state, inst)

        entry = state.get(inst.instance_id.data)
        if entry is None:
            raise ContractError(f"instance {inst.instance_id.hex()[:16]} not found")
        if entry.contract_id != inst.contract_id:
            raise ContractError(
                f"instance holds {entry.contract_id!r}, not {inst.contract_id!r}"
            )
        return contract.invoke(state, inst, entry)

    @staticmethod
    def _apply_change(state: Dict[bytes, StateEntry], change: StateChange) -> None:
        key = change.instance_id.data
        if change.kind == ChangeKind.CREATE and key in state:
            raise ContractError(f"instance {change.instance_id.hex()[:16]} already exists")
        if change.kind == ChangeKind.UPDATE and key not in state:
            raise ContractError(f"instance {change.instance_id.hex()[:16]} does not exist")
        state[key] = change.entry
