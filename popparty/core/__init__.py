"""
PoP Party Core Data Structures
"""

from popparty.core.types import Hash, InstanceID, PublicKey, SecretKey, KeyPair, IdentityRef
from popparty.core.party import (
    PartyState,
    PartyDescription,
    FinalStatement,
    PopPartyRecord,
    encode_roster,
    decode_roster,
)
from popparty.core.serialization import ByteReader, ByteWriter

__all__ = [
    # Types
    "Hash",
    "InstanceID",
    "PublicKey",
    "SecretKey",
    "KeyPair",
    "IdentityRef",
    # Party record
    "PartyState",
    "PartyDescription",
    "FinalStatement",
    "PopPartyRecord",
    "encode_roster",
    "decode_roster",
    # Serialization
    "ByteReader",
    "ByteWriter",
]
