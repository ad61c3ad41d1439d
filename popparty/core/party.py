"""
PoP Party Ledger Record

The record stored under a party's instance id, the description set at
spawn, and the final statement attendees sign against.

State only advances: PRE_BARRIER (1) -> SCANNING (2) -> FINALIZED (3).
"""

from __future__ import annotations
import enum
import json
from dataclasses import dataclass, field
from typing import Sequence, Tuple

from popparty.constants import POINT_SIZE
from popparty.core.serialization import ByteReader, ByteWriter
from popparty.core.types import Hash, PublicKey


class PartyState(enum.IntEnum):
    """Lifecycle state of a party. Ordinal comparisons are meaningful."""
    PRE_BARRIER = 1
    SCANNING = 2
    FINALIZED = 3


def encode_roster(keys: Sequence[PublicKey]) -> bytes:
    """Serialize a roster as varint(n) || key_1 || ... || key_n."""
    writer = ByteWriter()
    writer.write_varint(len(keys))
    for key in keys:
        writer.write_raw(key.data)
    return writer.to_bytes()


def _read_roster(reader: ByteReader) -> Tuple[PublicKey, ...]:
    count = reader.read_varint()
    return tuple(PublicKey(reader.read_fixed_bytes(POINT_SIZE)) for _ in range(count))


def decode_roster(data: bytes) -> Tuple[PublicKey, ...]:
    reader = ByteReader(data)
    keys = _read_roster(reader)
    reader.expect_end()
    return keys


@dataclass(frozen=True)
class PartyDescription:
    """
    Immutable party metadata set at spawn.

    Opaque to the state machine; part of the final statement.
    """
    name: str
    purpose: str
    datetime_ms: int
    location: str

    def serialize(self) -> bytes:
        return (
            ByteWriter()
            .write_str(self.name)
            .write_str(self.purpose)
            .write_u64(self.datetime_ms)
            .write_str(self.location)
            .to_bytes()
        )

    @classmethod
    def read(cls, reader: ByteReader) -> PartyDescription:
        return cls(
            name=reader.read_str(),
            purpose=reader.read_str(),
            datetime_ms=reader.read_u64(),
            location=reader.read_str(),
        )

    @classmethod
    def deserialize(cls, data: bytes) -> PartyDescription:
        reader = ByteReader(data)
        desc = cls.read(reader)
        reader.expect_end()
        return desc

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "purpose": self.purpose,
            "datetime_ms": self.datetime_ms,
            "location": self.location,
        }


@dataclass(frozen=True)
class FinalStatement:
    """
    Read-only projection of a finalized party: {description, attendees}.

    Anyone observing the finalized record reproduces these bytes exactly.
    """
    description: PartyDescription
    attendees: Tuple[PublicKey, ...]

    def serialize(self) -> bytes:
        return self.description.serialize() + encode_roster(self.attendees)

    @classmethod
    def deserialize(cls, data: bytes) -> FinalStatement:
        reader = ByteReader(data)
        description = PartyDescription.read(reader)
        attendees = _read_roster(reader)
        reader.expect_end()
        return cls(description=description, attendees=attendees)

    def hash(self) -> Hash:
        return Hash.digest(self.serialize())

    def to_json(self) -> str:
        return json.dumps(
            {
                "description": self.description.to_dict(),
                "attendees": [key.hex() for key in self.attendees],
            },
            indent=2,
        )


@dataclass(frozen=True)
class PopPartyRecord:
    """
    Party record as stored on the ledger.

    attendees stays empty until FINALIZED; organizer proposals live in
    `proposed` while the party is still SCANNING.
    """
    state: PartyState
    description: PartyDescription
    organizer_count: int
    mining_reward: int
    finalizations: Tuple[str, ...] = ()
    proposed: Tuple[PublicKey, ...] = ()
    attendees: Tuple[PublicKey, ...] = ()
    miners: Tuple[bytes, ...] = field(default=())

    def serialize(self) -> bytes:
        writer = ByteWriter()
        writer.write_u8(int(self.state))
        writer.write_bytes(self.description.serialize())
        writer.write_u32(self.organizer_count)
        writer.write_u64(self.mining_reward)
        writer.write_varint(len(self.finalizations))
        for org in self.finalizations:
            writer.write_str(org)
        writer.write_raw(encode_roster(self.proposed))
        writer.write_raw(encode_roster(self.attendees))
        writer.write_varint(len(self.miners))
        for tag in self.miners:
            writer.write_bytes(tag)
        return writer.to_bytes()

    @classmethod
    def deserialize(cls, data: bytes) -> PopPartyRecord:
        reader = ByteReader(data)
        state = PartyState(reader.read_u8())
        description = PartyDescription.deserialize(reader.read_bytes())
        organizer_count = reader.read_u32()
        mining_reward = reader.read_u64()
        finalizations = tuple(reader.read_str() for _ in range(reader.read_varint()))
        proposed = _read_roster(reader)
        attendees = _read_roster(reader)
        miners = tuple(reader.read_bytes() for _ in range(reader.read_varint()))
        reader.expect_end()
        return cls(
            state=state,
            description=description,
            organizer_count=organizer_count,
            mining_reward=mining_reward,
            finalizations=finalizations,
            proposed=proposed,
            attendees=attendees,
            miners=miners,
        )

    def final_statement(self) -> FinalStatement:
        return FinalStatement(description=self.description, attendees=self.attendees)
