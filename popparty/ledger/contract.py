"""
Ledger-side PoP party contract.

Validates and applies party instructions the way the ledger does:

    spawn     -> PRE_BARRIER, organizer count fixed from the finalize rule
    barrier   -> SCANNING
    finalize  -> FINALIZED once every organizer proposed the same roster
    mine      -> one reward per linkage tag, authorized by the ring signature,
                 paid to an existing coin or to a new coin under the miner's rule

Contracts are pure: they read a state view and return state changes.
"""

from __future__ import annotations
import dataclasses
import enum
import logging
from dataclasses import dataclass
from typing import List, Mapping, Optional

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
    CONTRACT_COIN,
    CONTRACT_DARC,
    CONTRACT_POP_PARTY,
    DOMAIN_COIN_ID,
    INSTANCE_ID_SIZE,
    MINE_ACTION,
    MINE_MESSAGE,
    RULE_INVOKE_FINALIZE,
)
from popparty.core.party import (
    PartyDescription,
    PartyState,
    PopPartyRecord,
    decode_roster,
)
from popparty.core.serialization import deserialize_u64, serialize_u64
from popparty.core.types import InstanceID
from popparty.crypto import lrs
from popparty.errors import ContractError, RingSignatureError
from popparty.ledger.access import AccessRule, rule_instance_id
from popparty.ledger.transaction import Instruction

logger = logging.getLogger(__name__)

MAX_COIN_VALUE = 0xFFFFFFFFFFFFFFFF


@dataclass(frozen=True)
class StateEntry:
    """Value stored under an instance id."""
    contract_id: str
    value: bytes
    rule_id: bytes


class ChangeKind(enum.IntEnum):
    CREATE = 1
    UPDATE = 2


@dataclass(frozen=True)
class StateChange:
    kind: ChangeKind
    instance_id: InstanceID
    entry: StateEntry


def _require_arg(inst: Instruction, name: str) -> bytes:
    value = inst.arg(name)
    if value is None:
        raise ContractError(f"missing argument: {name}")
    return value


class PopPartyContract:
    """Ledger rules for popParty instances."""

    contract_id = CONTRACT_POP_PARTY

    def spawn(self, state: Mapping[bytes, StateEntry], inst: Instruction) -> List[StateChange]:
        """
        Create a party.

        The instruction is sent to the rule that allows spawning; the
        ruleID argument names the rule that will govern the new party.
        """
        spawner = state.get(inst.instance_id.data)
        if spawner is None or spawner.contract_id != CONTRACT_DARC:
            raise ContractError("parties can only be spawned from an access rule")

        try:
            description = PartyDescription.deserialize(_require_arg(inst, ARG_DESCRIPTION))
            mining_reward, _ = deserialize_u64(_require_arg(inst, ARG_MINING_REWARD))
        except ValueError as e:
            raise ContractError(f"couldn't decode spawn arguments: {e}")

        rule_id = _require_arg(inst, ARG_RULE_ID)
        rule_entry = state.get(rule_id)
        if rule_entry is None or rule_entry.contract_id != CONTRACT_DARC:
            raise ContractError("ruleID does not name an access rule")

        rule = AccessRule.deserialize(rule_entry.value)
        record = PopPartyRecord(
            state=PartyState.PRE_BARRIER,
            description=description,
            organizer_count=len(rule.identities(RULE_INVOKE_FINALIZE)),
            mining_reward=mining_reward,
        )
        party_id = inst.derive_id("")
        logger.info(
            f"Spawning party {description.name!r} at {party_id.hex()[:16]} "
            f"with {record.organizer_count} organizers"
        )
        return [StateChange(
            ChangeKind.CREATE,
            party_id,
            StateEntry(CONTRACT_POP_PARTY, record.serialize(), rule_id),
        )]

    def invoke(
        self,
        state: Mapping[bytes, StateEntry],
        inst: Instruction,
        entry: StateEntry,
    ) -> List[StateChange]:
        record = PopPartyRecord.deserialize(entry.value)
        changes: List[StateChange] = []

        if inst.command == CMD_BARRIER:
            record = self._barrier(record)
        elif inst.command == CMD_FINALIZE:
            record = self._finalize(record, inst)
        elif inst.command == CMD_MINE:
            record, mine_changes = self._mine(state, record, inst)
            changes.extend(mine_changes)
        else:
            raise ContractError(f"unknown command: {inst.command}")

        changes.append(StateChange(
            ChangeKind.UPDATE,
            inst.instance_id,
            StateEntry(CONTRACT_POP_PARTY, record.serialize(), entry.rule_id),
        ))
        return changes

    @staticmethod
    def _barrier(record: PopPartyRecord) -> PopPartyRecord:
        if record.state != PartyState.PRE_BARRIER:
            raise ContractError("can only start barrier point when in configuration mode")
        return dataclasses.replace(record, state=PartyState.SCANNING)

    @staticmethod
    def _finalize(record: PopPartyRecord, inst: Instruction) -> PopPartyRecord:
        if record.state != PartyState.SCANNING:
            raise ContractError("can only finalize when barrier point is passed")

        try:
            proposal = decode_roster(_require_arg(inst, ARG_ATTENDEES))
        except ValueError as e:
            raise ContractError(f"couldn't decode attendees: {e}")
        if any(a.data >= b.data for a, b in zip(proposal, proposal[1:])):
            raise ContractError("attendees must be unique and byte-sorted")
        for key in proposal:
            if not key.is_valid():
                raise ContractError(f"attendee {key.hex()[:16]} is not a valid point")

        organizer = str(inst.signer_identities[0])

        if not record.finalizations or organizer in record.finalizations:
            # First proposal, or the same organizer resubmits
            proposed, finalizations = proposal, (organizer,)
            logger.debug(f"Roster proposal reset by {organizer[:24]}")
        elif proposal == record.proposed:
            proposed, finalizations = proposal, record.finalizations + (organizer,)
            logger.debug(f"One more finalization by {organizer[:24]}")
        else:
            proposed, finalizations = proposal, (organizer,)
            logger.debug("Different roster proposed - resetting")

        if len(finalizations) >= record.organizer_count:
            logger.info(
                f"Party {record.description.name!r} finalized with {len(proposed)} attendees"
            )
            return dataclasses.replace(
                record,
                state=PartyState.FINALIZED,
                finalizations=finalizations,
                proposed=(),
                attendees=proposed,
            )
        return dataclasses.replace(record, proposed=proposed, finalizations=finalizations)

    @staticmethod
    def _mine(
        state: Mapping[bytes, StateEntry],
        record: PopPartyRecord,
        inst: Instruction,
    ):
        if record.state != PartyState.FINALIZED:
            raise ContractError("cannot mine when party is not finalized")

        try:
            signature = lrs.RingSignature.deserialize(_require_arg(inst, ARG_LRS))
        except RingSignatureError as e:
            raise ContractError(f"couldn't decode ring signature: {e.message}")

        if not lrs.verify(
            MINE_MESSAGE, signature, record.attendees, inst.instance_id.data, MINE_ACTION
        ):
            raise ContractError("error while verifying ring signature")

        tag = _require_arg(inst, ARG_TAG)
        if tag != signature.tag:
            raise ContractError("linkage tag does not match signature")
        if tag in record.miners:
            raise ContractError("this attendee already mined")

        changes: List[StateChange] = []
        target = inst.arg(ARG_REWARD_TARGET)
        if target is not None:
            if len(target) != INSTANCE_ID_SIZE:
                raise ContractError("reward target must be a coin instance id")
            coin_id = InstanceID(target)
            changes.append(_credit_coin(state, coin_id, record.mining_reward))
        else:
            rule_value = inst.arg(ARG_NEW_RULE)
            if rule_value is None:
                raise ContractError(
                    f"need either {ARG_REWARD_TARGET} or {ARG_NEW_RULE} argument"
                )
            try:
                rule = AccessRule.deserialize(rule_value)
            except ValueError as e:
                raise ContractError(f"couldn't decode new access rule: {e}")

            # The miner's rule governs itself and the new coin
            rule_id = rule_instance_id(rule)
            if rule_id.data not in state:
                logger.debug(f"Creating access rule {rule_id.hex()[:16]} for miner")
                changes.append(StateChange(
                    ChangeKind.CREATE,
                    rule_id,
                    StateEntry(CONTRACT_DARC, rule.serialize(), rule_id.data),
                ))
            coin_id = coin_instance_id(rule_id.data)
            changes.append(
                _credit_coin(state, coin_id, record.mining_reward, create_under=rule_id.data)
            )

        logger.info(f"Mined {record.mining_reward} to {coin_id.hex()[:16]}, tag={tag.hex()[:16]}")
        return dataclasses.replace(record, miners=record.miners + (tag,)), changes


def _credit_coin(
    state: Mapping[bytes, StateEntry],
    coin_id: InstanceID,
    amount: int,
    create_under: Optional[bytes] = None,
) -> StateChange:
    """Credit amount to a coin; a missing coin is created only under create_under."""
    existing: Optional[StateEntry] = state.get(coin_id.data)
    if existing is None:
        if create_under is None:
            raise ContractError(f"reward coin {coin_id.hex()[:16]} not found")
        return StateChange(
            ChangeKind.CREATE,
            coin_id,
            StateEntry(CONTRACT_COIN, serialize_u64(amount), create_under),
        )
    if existing.contract_id != CONTRACT_COIN:
        raise ContractError("reward target is not a coin instance")

    balance, _ = deserialize_u64(existing.value)
    if balance + amount > MAX_COIN_VALUE:
        raise ContractError("coin balance overflow")
    return StateChange(
        ChangeKind.UPDATE,
        coin_id,
        StateEntry(CONTRACT_COIN, serialize_u64(balance + amount), existing.rule_id),
    )


def coin_instance_id(owner: bytes) -> InstanceID:
    """Conventional coin instance id for an owner (identity or account bytes)."""
    return InstanceID.derive(DOMAIN_COIN_ID, owner)


def rule_coin_id(rule: AccessRule) -> InstanceID:
    """Coin created by mining with newDarc=rule."""
    return coin_instance_id(rule_instance_id(rule).data)
