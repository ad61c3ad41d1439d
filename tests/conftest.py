"""
PoP Party Test Fixtures
"""

from typing import Dict, List, Sequence

import pytest
import pytest_asyncio

from popparty.constants import (
    RULE_INVOKE_BARRIER,
    RULE_INVOKE_FINALIZE,
    RULE_SPAWN_PARTY,
)
from popparty.core.party import PartyDescription
from popparty.core.types import IdentityRef, InstanceID, KeyPair, PublicKey
from popparty.ledger.memory import MemoryLedger
from popparty.ledger.transaction import Signer
from popparty.party.instance import PopPartyInstance

MINING_REWARD = 100


def party_rules(*signers: Signer) -> Dict[str, List[IdentityRef]]:
    """Rule letting every signer spawn, activate the barrier and finalize."""
    identities = [signer.identity for signer in signers]
    return {
        RULE_SPAWN_PARTY: identities,
        RULE_INVOKE_BARRIER: identities,
        RULE_INVOKE_FINALIZE: identities,
    }


def key_with_prefix(prefix: int) -> PublicKey:
    """32-byte key whose canonical encoding starts with prefix."""
    return PublicKey(bytes([prefix]) + bytes(31))


def point_with_prefix(prefix: int) -> PublicKey:
    """Valid personhood key whose canonical encoding starts with prefix."""
    while True:
        key = KeyPair.generate().public
        if key.data[0] == prefix:
            return key


@pytest.fixture
def ledger() -> MemoryLedger:
    """Fresh in-memory ledger."""
    return MemoryLedger()


@pytest.fixture
def organizer() -> Signer:
    """Deterministic organizer identity."""
    return Signer.from_seed(bytes(range(32)))


@pytest.fixture
def organizer_2() -> Signer:
    """Second deterministic organizer identity."""
    return Signer.from_seed(bytes(range(32, 64)))


@pytest.fixture
def organizer_keypair() -> KeyPair:
    """Personhood key of the first organizer."""
    return KeyPair.generate()


@pytest.fixture
def organizer_2_keypair() -> KeyPair:
    return KeyPair.generate()


@pytest.fixture
def attendees() -> Sequence[KeyPair]:
    """Personhood keys of three attendees."""
    return [KeyPair.generate() for _ in range(3)]


@pytest.fixture
def description() -> PartyDescription:
    return PartyDescription(
        name="Spring Meetup",
        purpose="proof of personhood",
        datetime_ms=1_700_000_000_000,
        location="Lausanne, EPFL BC building",
    )


@pytest.fixture
def party_rule(ledger, organizer, organizer_keypair) -> InstanceID:
    """Rule with a single organizer holding a personhood credential."""
    ledger.put_credential(organizer.identity, organizer_keypair.public)
    return ledger.put_rule(party_rules(organizer))


@pytest.fixture
def two_organizer_rule(
    ledger, organizer, organizer_2, organizer_keypair, organizer_2_keypair
) -> InstanceID:
    ledger.put_credential(organizer.identity, organizer_keypair.public)
    ledger.put_credential(organizer_2.identity, organizer_2_keypair.public)
    return ledger.put_rule(party_rules(organizer, organizer_2))


@pytest_asyncio.fixture
async def party(ledger, organizer, description, party_rule) -> PopPartyInstance:
    """Freshly spawned single-organizer party (PRE_BARRIER)."""
    return await PopPartyInstance.spawn(
        ledger, organizer, description, party_rule, mining_reward=MINING_REWARD
    )


@pytest_asyncio.fixture
async def scanning_party(party, organizer) -> PopPartyInstance:
    """Party past the barrier."""
    await party.activate_barrier(organizer)
    return party


@pytest_asyncio.fixture
async def finalized_party(scanning_party, organizer, attendees) -> PopPartyInstance:
    """Party finalized with the organizer and every attendee."""
    for pair in attendees:
        await scanning_party.add_attendee(pair.public)
    assert await scanning_party.finalize(organizer)
    return scanning_party
