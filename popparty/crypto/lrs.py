"""
Linkable Ring Signatures for anonymous mining.

LSAG-style ring signature (Liu, Wei, Wong 2004) whose linkage tag is scoped
to a context and an action instead of to the signer's public key:

    H   = hash_to_point(domain || context || action)     linkage base
    T   = x * H                                           linkage tag
    L_i = s_i * G + c_i * P_i
    R_i = s_i * H + c_i * T
    c_{i+1} = Hs(domain || m || context || action || P_0..P_{n-1} || T || L_i || R_i)

The ring closes when c_n == c_0. The tag depends only on (x, context,
action): one signer gets one tag per party and action, and tags of
different signers or different parties cannot be related.

Properties:
- Anonymity: verifier cannot determine which ring member signed
- Linkability: same key, context and action produce the same tag
- Unforgeability: only a secret key holder can close the ring
"""

import hashlib
import hmac
import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import List, Sequence, Tuple, Union

from popparty.constants import (
    DOMAIN_LINK_BASE,
    DOMAIN_RING_SIG,
    MINE_ACTION,
    POINT_SIZE,
    SCALAR_SIZE,
)
from popparty.core.serialization import ByteReader, ByteWriter, serialize_bytes
from popparty.core.types import PublicKey, SecretKey
from popparty.crypto.ed25519 import Ed25519Point
from popparty.errors import RingSignatureError

logger = logging.getLogger(__name__)

KeyLike = Union[PublicKey, bytes]


@dataclass(frozen=True)
class RingSignature:
    """
    Linkable ring signature.

    Components:
    - c0: initial challenge scalar
    - responses: one response scalar s_i per ring member
    - tag: linkage tag T = x * H(context, action)
    """
    c0: bytes
    responses: Tuple[bytes, ...]
    tag: bytes

    @property
    def ring_size(self) -> int:
        return len(self.responses)

    def serialize(self) -> bytes:
        """Serialize: c0 || tag || varint(n) || s_0 .. s_{n-1}."""
        writer = ByteWriter()
        writer.write_raw(self.c0)
        writer.write_raw(self.tag)
        writer.write_varint(len(self.responses))
        for s in self.responses:
            writer.write_raw(s)
        return writer.to_bytes()

    @classmethod
    def deserialize(cls, data: bytes) -> "RingSignature":
        try:
            reader = ByteReader(data)
            c0 = reader.read_fixed_bytes(SCALAR_SIZE)
            tag = reader.read_fixed_bytes(POINT_SIZE)
            n = reader.read_varint()
            responses = tuple(reader.read_fixed_bytes(SCALAR_SIZE) for _ in range(n))
            reader.expect_end()
        except ValueError as e:
            raise RingSignatureError(f"Malformed ring signature: {e}")
        return cls(c0=c0, responses=responses, tag=tag)


def _ring_bytes(roster: Sequence[KeyLike]) -> List[bytes]:
    return [bytes(pk) for pk in roster]


@lru_cache(maxsize=256)
def linkage_base(context: bytes, action: bytes = MINE_ACTION) -> bytes:
    """Point H every tag of this (context, action) is a multiple of."""
    return Ed25519Point.hash_to_point(
        DOMAIN_LINK_BASE + serialize_bytes(context) + serialize_bytes(action)
    )


def linkage_tag(secret: SecretKey, context: bytes, action: bytes = MINE_ACTION) -> bytes:
    """Tag the signer will publish for (context, action), without signing."""
    return Ed25519Point.scalarmult(secret.data, linkage_base(bytes(context), action))


def _challenge_prefix(
    message: bytes,
    context: bytes,
    action: bytes,
    ring: List[bytes],
    tag: bytes,
):
    h = hashlib.sha512()
    h.update(DOMAIN_RING_SIG)
    h.update(serialize_bytes(message))
    h.update(serialize_bytes(context))
    h.update(serialize_bytes(action))
    h.update(serialize_bytes(b"".join(ring)))
    h.update(tag)
    return h


def _challenge(prefix, L: bytes, R: bytes) -> bytes:
    h = prefix.copy()
    h.update(L)
    h.update(R)
    return Ed25519Point.scalar_reduce(h.digest())


def _validate_ring(ring: List[bytes]) -> None:
    if not ring:
        raise RingSignatureError("Ring must have at least 1 member")
    for i, pk in enumerate(ring):
        if not Ed25519Point.is_valid_point(pk):
            raise RingSignatureError(f"Ring member {i} is not a valid point")


def _ring_terms(
    s: bytes,
    c: bytes,
    member: bytes,
    base: bytes,
    tag: bytes,
) -> Tuple[bytes, bytes]:
    # L = s*G + c*P, R = s*H + c*T
    L = Ed25519Point.point_add(
        Ed25519Point.scalarmult_base(s),
        Ed25519Point.scalarmult(c, member),
    )
    R = Ed25519Point.point_add(
        Ed25519Point.scalarmult(s, base),
        Ed25519Point.scalarmult(c, tag),
    )
    return L, R


def sign(
    message: bytes,
    roster: Sequence[KeyLike],
    context: bytes,
    secret: SecretKey,
    action: bytes = MINE_ACTION,
) -> Tuple[RingSignature, bytes]:
    """
    Sign message as an anonymous member of roster.

    The signer's position is found by matching secret's public key against
    every roster entry.

    Args:
        message: Message to sign
        roster: Ordered ring of public keys
        context: Context identifier (party instance id)
        secret: Signer's secret scalar
        action: Action tag the linkage tag is scoped to

    Returns:
        (signature, linkage_tag)

    Raises:
        RingSignatureError: If the ring is invalid or the signer is not in it
    """
    ring = _ring_bytes(roster)
    _validate_ring(ring)
    context = bytes(context)
    n = len(ring)

    public = Ed25519Point.derive_public_key(secret.data)
    signer_index = -1
    for i, pk in enumerate(ring):
        if hmac.compare_digest(pk, public):
            signer_index = i
    if signer_index < 0:
        raise RingSignatureError("Signing key is not a member of the roster")

    base = linkage_base(context, action)
    tag = Ed25519Point.scalarmult(secret.data, base)
    prefix = _challenge_prefix(message, context, action, ring, tag)

    c: List[bytes] = [b""] * n
    s: List[bytes] = [b""] * n

    # Commitment for the real signer: L = a*G, R = a*H
    alpha = Ed25519Point.scalar_random()
    L_pi = Ed25519Point.scalarmult_base(alpha)
    R_pi = Ed25519Point.scalarmult(alpha, base)
    c[(signer_index + 1) % n] = _challenge(prefix, L_pi, R_pi)

    for j in range(1, n):
        i = (signer_index + j) % n
        s[i] = Ed25519Point.scalar_random()
        L_i, R_i = _ring_terms(s[i], c[i], ring[i], base, tag)
        c[(i + 1) % n] = _challenge(prefix, L_i, R_i)

    # Close the ring: s_pi = a - c_pi * x (mod L)
    s[signer_index] = Ed25519Point.scalar_sub(
        alpha, Ed25519Point.scalar_mul(c[signer_index], secret.data)
    )

    logger.debug(f"Signed ring of {n} members, tag={tag.hex()[:16]}")
    return RingSignature(c0=c[0], responses=tuple(s), tag=tag), tag


def verify(
    message: bytes,
    signature: RingSignature,
    roster: Sequence[KeyLike],
    context: bytes,
    action: bytes = MINE_ACTION,
) -> bool:
    """
    Verify a linkable ring signature over exactly roster and context.

    Every ring member is processed; there is no early exit inside the ring.

    Returns:
        True if the ring closes
    """
    ring = _ring_bytes(roster)
    context = bytes(context)
    n = len(ring)

    if n == 0 or n != signature.ring_size:
        logger.debug(f"Ring size mismatch: {n} != {signature.ring_size}")
        return False
    if not Ed25519Point.is_valid_point(signature.tag):
        logger.debug("Invalid linkage tag encoding")
        return False

    try:
        _validate_ring(ring)
        base = linkage_base(context, action)
        prefix = _challenge_prefix(message, context, action, ring, signature.tag)

        c = signature.c0
        for i in range(n):
            L_i, R_i = _ring_terms(signature.responses[i], c, ring[i], base, signature.tag)
            c = _challenge(prefix, L_i, R_i)
    except RingSignatureError as e:
        logger.warning(f"Ring signature verification error: {e}")
        return False

    if not hmac.compare_digest(c, signature.c0):
        logger.debug("Ring doesn't close")
        return False
    return True


def link(sig1: RingSignature, sig2: RingSignature) -> bool:
    """Check if two signatures carry the same linkage tag (constant-time)."""
    return hmac.compare_digest(sig1.tag, sig2.tag)


def generate_keypair() -> Tuple[SecretKey, PublicKey]:
    """Fresh personhood key pair usable as a ring member."""
    secret = SecretKey(Ed25519Point.scalar_random())
    return secret, secret.public_key()
