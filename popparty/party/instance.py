"""
PoP Party Instance

Client-side handle on one party stored on the ledger. Drives the party
through its lifecycle:

    PRE_BARRIER --activate_barrier--> SCANNING --finalize--> FINALIZED --mine-->

Every mutating ledger call is followed by a refresh; the refreshed state
must match what the call committed. Local bookkeeping (the scanned
candidate set) never touches the ledger until finalize.

Calls on one handle are serialized; independent handles share nothing.
"""

from __future__ import annotations
import asyncio
import logging
from typing import Any, Dict, List, Optional, Sequence

from popparty.constants import (
    ARG_ATTENDEES,
    ARG_DESCRIPTION,
    ARG_LRS,
    ARG_MINING_REWARD,
    ARG_NEW_RULE,
    ARG_REWARD_TARGET,
    ARG_RULE_ID,
    ARG_TAG,
    CMD_BARRIER,
    CMD_FINALIZE,
    CMD_MINE,
    CONTRACT_POP_PARTY,
    MINE_ACTION,
    MINE_MESSAGE,
    RULE_INVOKE_FINALIZE,
)
from popparty.core.party import (
    FinalStatement,
    PartyDescription,
    PartyState,
    PopPartyRecord,
    encode_roster,
)
from popparty.core.serialization import serialize_u64
from popparty.core.types import InstanceID, PublicKey, SecretKey
from popparty.crypto import lrs
from popparty.errors import (
    IllegalStateTransition,
    InvalidAttendeeKey,
    NotFinalized,
    ProofMismatch,
    StateConsistencyError,
)
from popparty.ledger.access import (
    AccessControlResolver,
    AccessRule,
    CredentialResolver,
    LedgerAccessResolver,
    LedgerCredentialResolver,
    resolve_organizer_keys,
)
from popparty.ledger.client import LedgerClient, TransactionOutcome, fetch_value
from popparty.ledger.transaction import Argument, ClientTransaction, Instruction, Signer
from popparty.party.roster import CandidateSet

logger = logging.getLogger(__name__)


class PopPartyInstance:
    """
    Handle on a PoP party.

    Use spawn() to create a party or from_ledger() to load one; both return
    a refreshed handle.
    """

    def __init__(
        self,
        ledger: LedgerClient,
        instance_id: InstanceID,
        access: Optional[AccessControlResolver] = None,
        credentials: Optional[CredentialResolver] = None,
    ):
        self.ledger = ledger
        self.instance_id = instance_id
        self.access = access or LedgerAccessResolver(ledger)
        self.credentials = credentials or LedgerCredentialResolver(ledger)

        self._lock = asyncio.Lock()
        self._record: Optional[PopPartyRecord] = None
        self._rule_id = b""
        self._block_index = 0
        self._candidates = CandidateSet()

    def __repr__(self) -> str:
        state = self._record.state.name if self._record else "UNLOADED"
        return f"PopPartyInstance({self.instance_id.hex()[:16]}, {state})"

    # =========================================================================
    # Construction
    # =========================================================================

    @classmethod
    async def from_ledger(
        cls,
        ledger: LedgerClient,
        instance_id: InstanceID,
        access: Optional[AccessControlResolver] = None,
        credentials: Optional[CredentialResolver] = None,
    ) -> PopPartyInstance:
        """
        Load an existing party.

        Raises:
            ProofMismatch: If no party is proven at instance_id
        """
        party = cls(ledger, instance_id, access, credentials)
        await party.refresh()
        return party

    @classmethod
    async def spawn(
        cls,
        ledger: LedgerClient,
        organizer: Signer,
        description: PartyDescription,
        rule_id: InstanceID,
        mining_reward: int,
        spawner: Optional[InstanceID] = None,
        access: Optional[AccessControlResolver] = None,
        credentials: Optional[CredentialResolver] = None,
    ) -> PopPartyInstance:
        """
        Create a new party governed by rule_id.

        Args:
            ledger: Ledger to submit to
            organizer: Identity allowed to spawn parties under spawner
            description: Party metadata
            rule_id: Access rule governing the new party
            mining_reward: Amount credited per successful mine
            spawner: Rule the spawn is sent to (defaults to rule_id)
        """
        inst = Instruction.create_spawn(
            spawner or rule_id,
            CONTRACT_POP_PARTY,
            [
                Argument(ARG_DESCRIPTION, description.serialize()),
                Argument(ARG_RULE_ID, rule_id.data),
                Argument(ARG_MINING_REWARD, serialize_u64(mining_reward)),
            ],
        )
        await inst.update_counters(ledger, [organizer])
        tx = ClientTransaction([inst])
        tx.sign_with([organizer])
        await ledger.submit_and_await(tx)

        party_id = inst.derive_id("")
        logger.info(f"Spawned party {description.name!r} as {party_id.hex()[:16]}")
        return await cls.from_ledger(ledger, party_id, access, credentials)

    # =========================================================================
    # Read access
    # =========================================================================

    @property
    def record(self) -> Optional[PopPartyRecord]:
        return self._record

    @property
    def state(self) -> Optional[PartyState]:
        return self._record.state if self._record else None

    @property
    def description(self) -> Optional[PartyDescription]:
        return self._record.description if self._record else None

    @property
    def rule_id(self) -> InstanceID:
        return InstanceID(self._rule_id)

    @property
    def block_index(self) -> int:
        return self._block_index

    def candidates(self) -> List[PublicKey]:
        """Scanned candidate keys. Only meaningful while SCANNING."""
        self._require_state("list candidates", PartyState.SCANNING)
        return self._candidates.keys()

    def final_statement(self) -> FinalStatement:
        """
        Raises:
            NotFinalized: If the party is not finalized yet
        """
        if self._record is None or self._record.state != PartyState.FINALIZED:
            raise NotFinalized("read the final statement")
        return self._record.final_statement()

    def to_dict(self) -> Dict[str, Any]:
        record = self._record
        if record is None:
            return {"instance_id": self.instance_id.hex(), "state": None}
        return {
            "instance_id": self.instance_id.hex(),
            "rule_id": self._rule_id.hex(),
            "block_index": self._block_index,
            "state": record.state.name,
            "description": record.description.to_dict(),
            "organizer_count": record.organizer_count,
            "finalizations": list(record.finalizations),
            "attendees": [key.hex() for key in record.attendees],
            "mining_reward": record.mining_reward,
            "miners": len(record.miners),
        }

    # =========================================================================
    # Refresh
    # =========================================================================

    async def refresh(self) -> None:
        """
        Reload the party from the ledger.

        Raises:
            ProofMismatch: If the proof does not prove this party
            MissingCredential: If an organizer has no personhood credential
        """
        async with self._lock:
            await self._refresh()

    async def _refresh(self) -> None:
        proof = await fetch_value(self.ledger, self.instance_id, CONTRACT_POP_PARTY)
        try:
            record = PopPartyRecord.deserialize(proof.decode())
        except ValueError as e:
            raise ProofMismatch(self.instance_id.data, f"undecodable party record: {e}")

        if self._record is not None and record.state < self._record.state:
            raise StateConsistencyError("refresh", self._record.state, record.state)

        candidates = self._candidates
        if record.state == PartyState.SCANNING and len(candidates) == 0:
            organizers = await resolve_organizer_keys(
                proof.rule_id, RULE_INVOKE_FINALIZE, self.access, self.credentials
            )
            candidates = CandidateSet(organizers)
            logger.debug(f"Seeded candidates with {len(candidates)} organizer keys")

        self._record = record
        self._rule_id = proof.rule_id
        self._block_index = proof.block_index
        self._candidates = candidates
        logger.debug(f"Refreshed {self!r} at block {proof.block_index}")

    async def fetch_organizer_keys(self) -> Sequence[PublicKey]:
        """
        Personhood keys of every organizer of this party.

        Raises:
            MissingCredential: If an organizer has no personhood credential
        """
        async with self._lock:
            if self._record is None:
                await self._refresh()
            return await resolve_organizer_keys(
                self._rule_id, RULE_INVOKE_FINALIZE, self.access, self.credentials
            )

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def activate_barrier(self, organizer: Signer) -> None:
        """
        Close configuration and start scanning attendees.

        Raises:
            IllegalStateTransition: If the party is not PRE_BARRIER
            StateConsistencyError: If the ledger does not read back SCANNING
        """
        async with self._lock:
            self._require_state("activate the barrier", PartyState.PRE_BARRIER)
            await self._invoke(CMD_BARRIER, [], organizer)
            await self._refresh()
            if self._record.state != PartyState.SCANNING:
                raise StateConsistencyError(
                    "activate_barrier", PartyState.SCANNING, self._record.state
                )
            logger.info(f"Barrier activated for {self!r}")

    async def add_attendee(self, key: PublicKey) -> None:
        """
        Raises:
            IllegalStateTransition: If the party is not SCANNING
            InvalidAttendeeKey: If key is not a valid personhood key
            DuplicateAttendee: If the key was already scanned
        """
        async with self._lock:
            self._require_state("add an attendee", PartyState.SCANNING)
            if not key.is_valid():
                raise InvalidAttendeeKey(key.data)
            self._candidates.add(key)

    async def remove_attendee(self, key: PublicKey) -> int:
        """
        Remove a scanned key; returns the number of candidates left.

        Raises:
            IllegalStateTransition: If the party is not SCANNING
            UnknownAttendee: If the key was never scanned
        """
        async with self._lock:
            self._require_state("remove an attendee", PartyState.SCANNING)
            return self._candidates.remove(key)

    async def finalize(self, organizer: Signer) -> bool:
        """
        Propose the canonical roster of scanned candidates.

        Returns:
            True once the party is FINALIZED; False while other organizers
            still have to submit the same roster

        Raises:
            IllegalStateTransition: If the party is not SCANNING
            StateConsistencyError: If the read-back is neither finalized nor
                a pending finalization by organizer
        """
        async with self._lock:
            self._require_state("finalize", PartyState.SCANNING)
            roster = self._candidates.roster()
            await self._invoke(
                CMD_FINALIZE, [Argument(ARG_ATTENDEES, encode_roster(roster))], organizer
            )
            await self._refresh()

            record = self._record
            if record.state == PartyState.FINALIZED:
                logger.info(f"Finalized {self!r} with {len(record.attendees)} attendees")
                return True
            if record.state == PartyState.SCANNING and str(organizer.identity) in record.finalizations:
                logger.info(
                    f"Finalization pending for {self!r}: "
                    f"{len(record.finalizations)}/{record.organizer_count} organizers"
                )
                return False
            raise StateConsistencyError("finalize", PartyState.FINALIZED, record.state)

    async def mine(
        self,
        secret: SecretKey,
        reward_target: Optional[InstanceID] = None,
        new_rule: Optional[AccessRule] = None,
    ) -> bytes:
        """
        Claim the mining reward anonymously.

        Signs "mine" under the finalized roster with this party as context
        and submits it without any signer. The reward goes to the existing
        coin reward_target or, without one, to a coin the ledger creates
        under new_rule (see rule_coin_id). The ledger pays at most once per
        linkage tag.

        Returns:
            The linkage tag

        Raises:
            ValueError: If neither reward_target nor new_rule is given
            NotFinalized: If the party is not finalized; nothing is submitted
            RingSignatureError: If secret does not belong to an attendee
            LedgerSubmissionFailed: If the ledger rejects the claim
        """
        if reward_target is None and new_rule is None:
            raise ValueError("mine needs a reward_target or a new_rule")

        async with self._lock:
            if self._record is None or self._record.state != PartyState.FINALIZED:
                raise NotFinalized("mine")

            if reward_target is not None:
                destination = Argument(ARG_REWARD_TARGET, reward_target.data)
            else:
                destination = Argument(ARG_NEW_RULE, new_rule.serialize())

            signature, tag = lrs.sign(
                MINE_MESSAGE,
                self._record.attendees,
                self.instance_id.data,
                secret,
                MINE_ACTION,
            )
            inst = Instruction.create_invoke(
                self.instance_id,
                CONTRACT_POP_PARTY,
                CMD_MINE,
                [
                    Argument(ARG_LRS, signature.serialize()),
                    Argument(ARG_TAG, tag),
                    destination,
                ],
            )
            await self.ledger.submit_and_await(ClientTransaction([inst]))
            await self._refresh()
            logger.info(f"Mined on {self!r}, tag={tag.hex()[:16]}")
            return tag

    # =========================================================================
    # Internals
    # =========================================================================

    def _require_state(self, operation: str, expected: PartyState) -> None:
        state = self._record.state if self._record is not None else None
        if state != expected:
            raise IllegalStateTransition(operation, state)

    async def _invoke(
        self,
        command: str,
        args: Sequence[Argument],
        signer: Signer,
    ) -> TransactionOutcome:
        inst = Instruction.create_invoke(self.instance_id, CONTRACT_POP_PARTY, command, args)
        await inst.update_counters(self.ledger, [signer])
        tx = ClientTransaction([inst])
        tx.sign_with([signer])
        return await self.ledger.submit_and_await(tx)
