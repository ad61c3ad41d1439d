"""
Binary Merkle tree over ledger state leaves.

The ledger commits to every instance with one root; a Proof carries the
inclusion path of a single instance so clients can check what they decode.
"""

from __future__ import annotations
from typing import List, Optional
from dataclasses import dataclass

from popparty.core.serialization import ByteReader, ByteWriter
from popparty.core.types import Hash


def is_power_of_two(n: int) -> bool:
    """Check if n is a power of 2."""
    return n > 0 and (n & (n - 1)) == 0


def _parent(left: Hash, right: Hash) -> Hash:
    return Hash.digest(left.data, right.data)


def merkle_root(hashes: List[Hash]) -> Hash:
    """
    Compute Merkle root from a list of hashes.

    - Empty list returns zero hash
    - Single element returns that element
    - Otherwise, pad to power of 2 and build tree bottom-up
    """
    return MerkleTree(hashes).root


@dataclass
class MerkleProof:
    """
    Merkle inclusion proof.

    Contains the sibling hashes and position flags needed to
    reconstruct the root from a leaf.
    """
    leaf: Hash
    siblings: List[Hash]
    # For each sibling, True if sibling is on the right
    sibling_positions: List[bool]

    def verify(self, root: Hash) -> bool:
        """Verify this proof against the expected root."""
        if len(self.siblings) != len(self.sibling_positions):
            return False

        current = self.leaf
        for sibling, is_right in zip(self.siblings, self.sibling_positions):
            if is_right:
                current = _parent(current, sibling)
            else:
                current = _parent(sibling, current)

        return current == root

    def serialize(self) -> bytes:
        writer = ByteWriter()
        writer.write_raw(self.leaf.data)
        writer.write_varint(len(self.siblings))
        for sibling, is_right in zip(self.siblings, self.sibling_positions):
            writer.write_u8(1 if is_right else 0)
            writer.write_raw(sibling.data)
        return writer.to_bytes()

    @classmethod
    def read(cls, reader: ByteReader) -> MerkleProof:
        leaf = Hash(reader.read_fixed_bytes(32))
        count = reader.read_varint()
        siblings = []
        sibling_positions = []
        for _ in range(count):
            sibling_positions.append(reader.read_u8() == 1)
            siblings.append(Hash(reader.read_fixed_bytes(32)))
        return cls(leaf=leaf, siblings=siblings, sibling_positions=sibling_positions)


class MerkleTree:
    """
    Complete Merkle tree with proof generation.
    """

    def __init__(self, leaves: List[Hash]):
        self._original_leaves = list(leaves)
        self._levels: List[List[Hash]] = []

        if len(leaves) == 0:
            self._root = Hash.zero()
            return

        if len(leaves) == 1:
            self._levels = [list(leaves)]
            self._root = leaves[0]
            return

        # Pad to power of 2 by duplicating last element
        padded = list(leaves)
        while not is_power_of_two(len(padded)):
            padded.append(padded[-1])

        self._levels = [padded]
        current = padded
        while len(current) > 1:
            current = [
                _parent(current[i], current[i + 1])
                for i in range(0, len(current), 2)
            ]
            self._levels.append(current)

        self._root = current[0]

    @property
    def root(self) -> Hash:
        return self._root

    def get_proof(self, index: int) -> Optional[MerkleProof]:
        """
        Generate a Merkle proof for the leaf at the given index.

        Returns:
            MerkleProof if index is valid, None otherwise
        """
        if index < 0 or index >= len(self._original_leaves):
            return None

        siblings = []
        sibling_positions = []
        current_index = index

        for level in self._levels[:-1]:  # Exclude root level
            if current_index % 2 == 0:
                sibling_index = current_index + 1
                is_right = True
            else:
                sibling_index = current_index - 1
                is_right = False

            siblings.append(level[sibling_index])
            sibling_positions.append(is_right)
            current_index //= 2

        return MerkleProof(
            leaf=self._original_leaves[index],
            siblings=siblings,
            sibling_positions=sibling_positions
        )
