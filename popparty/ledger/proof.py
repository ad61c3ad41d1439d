"""
Ledger state proofs.

A Proof binds one instance's (contract, value, rule) to the ledger's state
root through a Merkle inclusion path. A proof of absence carries no path
and never matches.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Optional

from popparty.constants import DOMAIN_STATE_LEAF, INSTANCE_ID_SIZE
from popparty.core.serialization import ByteReader, ByteWriter
from popparty.core.types import Hash, InstanceID
from popparty.crypto.merkle import MerkleProof
from popparty.errors import ProofMismatch


def state_leaf(instance_id: InstanceID, contract_id: str, value: bytes, rule_id: bytes) -> Hash:
    """Leaf hash committing to one ledger instance."""
    writer = ByteWriter()
    writer.write_raw(DOMAIN_STATE_LEAF)
    writer.write_raw(instance_id.data)
    writer.write_str(contract_id)
    writer.write_bytes(value)
    writer.write_bytes(rule_id)
    return Hash.digest(writer.to_bytes())


@dataclass(frozen=True)
class Proof:
    """Inclusion (or absence) proof for a ledger instance."""
    instance_id: InstanceID
    contract_id: str
    value: bytes
    rule_id: bytes
    root: Hash
    block_index: int
    inclusion: Optional[MerkleProof] = None

    @classmethod
    def absent(cls, instance_id: InstanceID, root: Hash, block_index: int) -> Proof:
        return cls(
            instance_id=instance_id,
            contract_id="",
            value=b"",
            rule_id=b"",
            root=root,
            block_index=block_index,
        )

    @property
    def exists(self) -> bool:
        return self.inclusion is not None

    def matches(self, instance_id: InstanceID) -> bool:
        """True if this proves the presence of instance_id under root."""
        if self.inclusion is None or self.instance_id != instance_id:
            return False
        leaf = state_leaf(self.instance_id, self.contract_id, self.value, self.rule_id)
        if leaf != self.inclusion.leaf:
            return False
        return self.inclusion.verify(self.root)

    def decode(self) -> bytes:
        """
        Return the proven record bytes.

        Raises:
            ProofMismatch: If this is a proof of absence
        """
        if self.inclusion is None:
            raise ProofMismatch(self.instance_id.data, "proof of absence")
        return self.value

    def serialize(self) -> bytes:
        writer = ByteWriter()
        writer.write_raw(self.instance_id.data)
        writer.write_str(self.contract_id)
        writer.write_bytes(self.value)
        writer.write_bytes(self.rule_id)
        writer.write_raw(self.root.data)
        writer.write_u64(self.block_index)
        if self.inclusion is None:
            writer.write_u8(0)
        else:
            writer.write_u8(1)
            writer.write_raw(self.inclusion.serialize())
        return writer.to_bytes()

    @classmethod
    def deserialize(cls, data: bytes) -> Proof:
        reader = ByteReader(data)
        instance_id = InstanceID(reader.read_fixed_bytes(INSTANCE_ID_SIZE))
        contract_id = reader.read_str()
        value = reader.read_bytes()
        rule_id = reader.read_bytes()
        root = Hash(reader.read_fixed_bytes(32))
        block_index = reader.read_u64()
        inclusion = MerkleProof.read(reader) if reader.read_u8() == 1 else None
        reader.expect_end()
        return cls(
            instance_id=instance_id,
            contract_id=contract_id,
            value=value,
            rule_id=rule_id,
            root=root,
            block_index=block_index,
            inclusion=inclusion,
        )
