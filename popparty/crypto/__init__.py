"""
PoP Party Cryptographic Primitives
"""

from popparty.crypto.ed25519 import Ed25519Point
from popparty.crypto.lrs import (
    RingSignature,
    linkage_base,
    linkage_tag,
    sign,
    verify,
    link,
    generate_keypair,
)
from popparty.crypto.merkle import merkle_root, MerkleProof, MerkleTree

__all__ = [
    # Group operations
    "Ed25519Point",
    # Linkable ring signatures
    "RingSignature",
    "linkage_base",
    "linkage_tag",
    "sign",
    "verify",
    "link",
    "generate_keypair",
    # Merkle tree
    "merkle_root",
    "MerkleProof",
    "MerkleTree",
]
