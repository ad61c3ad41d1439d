"""
PoP Party Cryptographic Types

Fixed-size byte wrappers for hashes, instance ids and personhood keys,
plus identity references used by access rules.
"""

from __future__ import annotations
from dataclasses import dataclass, field
import hashlib

from popparty.constants import (
    HASH_SIZE,
    INSTANCE_ID_SIZE,
    POINT_SIZE,
    SCALAR_SIZE,
)


@dataclass(frozen=True, slots=True)
class Hash:
    """
    SHA-256 hash output.

    SIZE: 32 bytes
    SERIALIZATION: raw bytes
    """
    data: bytes = field(default_factory=lambda: bytes(HASH_SIZE))

    def __post_init__(self):
        if len(self.data) != HASH_SIZE:
            raise ValueError(f"Hash must be {HASH_SIZE} bytes, got {len(self.data)}")

    def __bytes__(self) -> bytes:
        return self.data

    def __repr__(self) -> str:
        return f"Hash({self.data.hex()[:16]}...)"

    def hex(self) -> str:
        return self.data.hex()

    @classmethod
    def from_hex(cls, hex_string: str) -> Hash:
        return cls(bytes.fromhex(hex_string))

    @classmethod
    def zero(cls) -> Hash:
        return cls(bytes(HASH_SIZE))

    @classmethod
    def digest(cls, *parts: bytes) -> Hash:
        """SHA-256 over the concatenation of parts."""
        hasher = hashlib.sha256()
        for part in parts:
            hasher.update(part)
        return cls(hasher.digest())


@dataclass(frozen=True, slots=True)
class InstanceID:
    """
    Ledger instance identifier.

    SIZE: 32 bytes
    """
    data: bytes

    def __post_init__(self):
        if len(self.data) != INSTANCE_ID_SIZE:
            raise ValueError(
                f"InstanceID must be {INSTANCE_ID_SIZE} bytes, got {len(self.data)}"
            )

    def __bytes__(self) -> bytes:
        return self.data

    def __repr__(self) -> str:
        return f"InstanceID({self.data.hex()[:16]}...)"

    def hex(self) -> str:
        return self.data.hex()

    @classmethod
    def from_hex(cls, hex_string: str) -> InstanceID:
        return cls(bytes.fromhex(hex_string))

    @classmethod
    def derive(cls, *parts: bytes) -> InstanceID:
        return cls(Hash.digest(*parts).data)


@dataclass(frozen=True, slots=True, order=True)
class PublicKey:
    """
    Personhood public key: compressed Ed25519 point.

    SIZE: 32 bytes
    SERIALIZATION: raw point encoding. Ordering is unsigned byte-wise
    lexicographic over that encoding.
    """
    data: bytes

    def __post_init__(self):
        if len(self.data) != POINT_SIZE:
            raise ValueError(f"PublicKey must be {POINT_SIZE} bytes, got {len(self.data)}")

    def __bytes__(self) -> bytes:
        return self.data

    def __repr__(self) -> str:
        return f"PublicKey({self.data.hex()[:16]}...)"

    def hex(self) -> str:
        return self.data.hex()

    @classmethod
    def from_hex(cls, hex_string: str) -> PublicKey:
        return cls(bytes.fromhex(hex_string))

    def is_valid(self) -> bool:
        """True if the encoding is a point of the prime-order subgroup."""
        from popparty.crypto.ed25519 import Ed25519Point
        return Ed25519Point.is_valid_point(self.data)


@dataclass(frozen=True, slots=True)
class SecretKey:
    """
    Personhood secret: Ed25519 scalar, little-endian, reduced mod L.

    SIZE: 32 bytes
    NOTE: Never transmitted over network.
    """
    data: bytes

    def __post_init__(self):
        if len(self.data) != SCALAR_SIZE:
            raise ValueError(f"SecretKey must be {SCALAR_SIZE} bytes, got {len(self.data)}")

    def __repr__(self) -> str:
        # Never expose secret key data
        return "SecretKey(<redacted>)"

    @classmethod
    def from_hex(cls, hex_string: str) -> SecretKey:
        return cls(bytes.fromhex(hex_string))

    def public_key(self) -> PublicKey:
        from popparty.crypto.ed25519 import Ed25519Point
        return PublicKey(Ed25519Point.derive_public_key(self.data))


@dataclass(frozen=True, slots=True)
class KeyPair:
    """
    Personhood key pair used for ring signatures.
    """
    public: PublicKey
    secret: SecretKey

    def __repr__(self) -> str:
        return f"KeyPair(public={self.public})"

    @classmethod
    def generate(cls) -> KeyPair:
        from popparty.crypto.ed25519 import Ed25519Point
        secret = SecretKey(Ed25519Point.scalar_random())
        return cls(public=secret.public_key(), secret=secret)

    @classmethod
    def from_secret(cls, secret: SecretKey) -> KeyPair:
        return cls(public=secret.public_key(), secret=secret)


@dataclass(frozen=True, slots=True, order=True)
class IdentityRef:
    """
    Reference to an identity allowed by an access rule.

    String form: "<kind>:<hex>", e.g. "ed25519:ab12...".
    """
    kind: str
    value: bytes

    def __str__(self) -> str:
        return f"{self.kind}:{self.value.hex()}"

    @classmethod
    def from_string(cls, text: str) -> IdentityRef:
        kind, sep, value = text.partition(":")
        if not sep or not kind:
            raise ValueError(f"Malformed identity reference: {text!r}")
        return cls(kind=kind, value=bytes.fromhex(value))

    @classmethod
    def ed25519(cls, verify_key: bytes) -> IdentityRef:
        return cls(kind="ed25519", value=bytes(verify_key))
