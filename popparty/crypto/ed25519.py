"""
Ed25519 group operations for personhood keys.

Thin wrappers around libsodium (via PyNaCl) so every scalar operation on
secret data runs in libsodium's constant-time code paths.
"""

import hashlib
import struct
import logging

import nacl.bindings
import nacl.exceptions
import nacl.utils

from popparty.constants import (
    DOMAIN_HASH_TO_POINT,
    HASH_TO_POINT_ATTEMPTS,
    POINT_SIZE,
    SCALAR_SIZE,
)
from popparty.errors import RingSignatureError

logger = logging.getLogger(__name__)

ZERO_SCALAR = bytes(SCALAR_SIZE)
COFACTOR = (8).to_bytes(SCALAR_SIZE, "little")


class Ed25519Point:
    """
    Ed25519 elliptic curve point operations using libsodium.

    Points are 32-byte compressed encodings, scalars are 32-byte
    little-endian integers reduced mod L.
    """

    POINT_SIZE = POINT_SIZE
    SCALAR_SIZE = SCALAR_SIZE

    @staticmethod
    def is_valid_point(point: bytes) -> bool:
        """Check if bytes encode a point in the prime-order subgroup."""
        if len(point) != POINT_SIZE:
            return False
        return bool(nacl.bindings.crypto_core_ed25519_is_valid_point(point))

    @staticmethod
    def scalar_reduce(scalar_64: bytes) -> bytes:
        """Reduce 64-byte value to valid Ed25519 scalar."""
        if len(scalar_64) != 64:
            scalar_64 = hashlib.sha512(scalar_64).digest()
        return nacl.bindings.crypto_core_ed25519_scalar_reduce(scalar_64)

    @staticmethod
    def scalar_sub(a: bytes, b: bytes) -> bytes:
        """Subtract two scalars mod L: a - b."""
        return nacl.bindings.crypto_core_ed25519_scalar_sub(a, b)

    @staticmethod
    def scalar_mul(a: bytes, b: bytes) -> bytes:
        """Multiply two scalars mod L."""
        return nacl.bindings.crypto_core_ed25519_scalar_mul(a, b)

    @staticmethod
    def scalar_random() -> bytes:
        """Generate a uniformly random non-zero scalar."""
        while True:
            scalar = Ed25519Point.scalar_reduce(nacl.utils.random(64))
            if scalar != ZERO_SCALAR:
                return scalar

    @staticmethod
    def point_add(p: bytes, q: bytes) -> bytes:
        """Add two Ed25519 points."""
        try:
            return nacl.bindings.crypto_core_ed25519_add(p, q)
        except nacl.exceptions.CryptoError as e:
            raise RingSignatureError(f"Point addition failed: {e}")

    @staticmethod
    def scalarmult_base(scalar: bytes) -> bytes:
        """Scalar multiplication with base point: s * G."""
        try:
            return nacl.bindings.crypto_scalarmult_ed25519_base_noclamp(scalar)
        except nacl.exceptions.CryptoError as e:
            raise RingSignatureError(f"Base point multiplication failed: {e}")

    @staticmethod
    def scalarmult(scalar: bytes, point: bytes) -> bytes:
        """Scalar multiplication: s * P."""
        if scalar == ZERO_SCALAR:
            # libsodium refuses to return the identity element
            raise RingSignatureError("Zero scalar multiplication not supported")
        try:
            return nacl.bindings.crypto_scalarmult_ed25519_noclamp(scalar, point)
        except nacl.exceptions.CryptoError as e:
            raise RingSignatureError(f"Scalar multiplication failed: {e}")

    @staticmethod
    def hash_to_point(data: bytes) -> bytes:
        """
        Hash data to a point of the prime-order subgroup.

        Uses try-and-increment with domain separation, then clears the
        cofactor so the result has no small-order component.
        """
        for counter in range(HASH_TO_POINT_ATTEMPTS):
            hash_input = DOMAIN_HASH_TO_POINT + data + struct.pack('<H', counter)
            candidate = bytearray(hashlib.sha256(hash_input).digest())

            # Sign bit from an extra hash bit
            extra = hashlib.sha256(hash_input + b'\xff').digest()[0]
            candidate[31] = (candidate[31] & 0x7F) | ((extra & 1) << 7)
            candidate = bytes(candidate)

            if not Ed25519Point.is_valid_point(candidate):
                continue
            try:
                result = nacl.bindings.crypto_scalarmult_ed25519_noclamp(COFACTOR, candidate)
            except nacl.exceptions.CryptoError:
                continue
            return result

        raise RingSignatureError(
            f"Hash to point failed after {HASH_TO_POINT_ATTEMPTS} attempts"
        )

    @staticmethod
    def derive_public_key(secret: bytes) -> bytes:
        """Derive public point secret * G (no clamping)."""
        return Ed25519Point.scalarmult_base(secret)
