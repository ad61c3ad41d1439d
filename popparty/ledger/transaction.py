"""
PoP Party Ledger Transactions

Instructions, client transactions and the identity signer that authorizes
them with per-identity monotonic counters.
"""

from __future__ import annotations
import enum
import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, TYPE_CHECKING

import nacl.exceptions
import nacl.signing

from popparty.constants import (
    DOMAIN_INSTRUCTION,
    DOMAIN_TRANSACTION,
    ED25519_SIGNATURE_SIZE,
    INSTANCE_ID_SIZE,
    PROTOCOL_VERSION,
)
from popparty.core.serialization import ByteReader, ByteWriter
from popparty.core.types import Hash, IdentityRef, InstanceID

if TYPE_CHECKING:
    from popparty.ledger.client import LedgerClient

logger = logging.getLogger(__name__)


class InstructionKind(enum.IntEnum):
    SPAWN = 1
    INVOKE = 2


class Signer:
    """
    Private identity that signs transactions.

    Wraps an Ed25519 signing key; its public identity is
    IdentityRef("ed25519", verify_key).
    """

    def __init__(self, signing_key: nacl.signing.SigningKey):
        self._key = signing_key
        self.identity = IdentityRef.ed25519(bytes(signing_key.verify_key))

    def __repr__(self) -> str:
        return f"Signer({self.identity})"

    @classmethod
    def generate(cls) -> Signer:
        return cls(nacl.signing.SigningKey.generate())

    @classmethod
    def from_seed(cls, seed: bytes) -> Signer:
        return cls(nacl.signing.SigningKey(seed))

    def sign(self, message: bytes) -> bytes:
        return self._key.sign(message).signature


def verify_identity_signature(identity: IdentityRef, message: bytes, signature: bytes) -> bool:
    """Check an Ed25519 signature made by identity over message."""
    if identity.kind != "ed25519" or len(signature) != ED25519_SIGNATURE_SIZE:
        return False
    try:
        nacl.signing.VerifyKey(identity.value).verify(message, signature)
    except nacl.exceptions.CryptoError:
        return False
    return True


@dataclass(frozen=True)
class Argument:
    """Named instruction argument."""
    name: str
    value: bytes


@dataclass
class Instruction:
    """
    One contract call inside a transaction.

    Signer identities and counters are covered by the transaction digest;
    signatures are not.
    """
    instance_id: InstanceID
    kind: InstructionKind
    contract_id: str
    command: str = ""
    args: List[Argument] = field(default_factory=list)
    signer_identities: List[IdentityRef] = field(default_factory=list)
    signer_counters: List[int] = field(default_factory=list)
    signatures: List[bytes] = field(default_factory=list)

    @classmethod
    def create_spawn(
        cls,
        instance_id: InstanceID,
        contract_id: str,
        args: Sequence[Argument] = (),
    ) -> Instruction:
        return cls(
            instance_id=instance_id,
            kind=InstructionKind.SPAWN,
            contract_id=contract_id,
            args=list(args),
        )

    @classmethod
    def create_invoke(
        cls,
        instance_id: InstanceID,
        contract_id: str,
        command: str,
        args: Sequence[Argument] = (),
    ) -> Instruction:
        return cls(
            instance_id=instance_id,
            kind=InstructionKind.INVOKE,
            contract_id=contract_id,
            command=command,
            args=list(args),
        )

    @property
    def is_anonymous(self) -> bool:
        """No signer, no counter: authorized by its own arguments."""
        return not self.signer_identities and not self.signer_counters

    @property
    def action(self) -> str:
        if self.kind == InstructionKind.SPAWN:
            return f"spawn:{self.contract_id}"
        return f"invoke:{self.contract_id}.{self.command}"

    def arg(self, name: str) -> Optional[bytes]:
        for argument in self.args:
            if argument.name == name:
                return argument.value
        return None

    async def update_counters(self, ledger: "LedgerClient", signers: Sequence[Signer]) -> None:
        """Set signer identities and their next counters from the ledger."""
        identities = [signer.identity for signer in signers]
        counters = await ledger.get_signer_counters(identities)
        self.signer_identities = identities
        self.signer_counters = [counter + 1 for counter in counters]
        self.signatures = []

    def _write_body(self, writer: ByteWriter) -> None:
        writer.write_raw(self.instance_id.data)
        writer.write_u8(int(self.kind))
        writer.write_str(self.contract_id)
        writer.write_str(self.command)
        writer.write_varint(len(self.args))
        for argument in self.args:
            writer.write_str(argument.name)
            writer.write_bytes(argument.value)
        writer.write_varint(len(self.signer_identities))
        for identity, counter in zip(self.signer_identities, self.signer_counters):
            writer.write_str(str(identity))
            writer.write_u64(counter)

    def hash(self) -> Hash:
        writer = ByteWriter()
        writer.write_raw(DOMAIN_INSTRUCTION)
        self._write_body(writer)
        return Hash.digest(writer.to_bytes())

    def derive_id(self, label: str = "") -> InstanceID:
        """Instance id of anything this instruction spawns."""
        return InstanceID.derive(self.hash().data, label.encode("utf-8"))

    def write(self, writer: ByteWriter) -> None:
        if len(self.signer_identities) != len(self.signer_counters):
            raise ValueError("Each signer identity needs exactly one counter")
        self._write_body(writer)
        writer.write_varint(len(self.signatures))
        for signature in self.signatures:
            writer.write_bytes(signature)

    @classmethod
    def read(cls, reader: ByteReader) -> Instruction:
        instance_id = InstanceID(reader.read_fixed_bytes(INSTANCE_ID_SIZE))
        kind = InstructionKind(reader.read_u8())
        contract_id = reader.read_str()
        command = reader.read_str()
        args = [
            Argument(name=reader.read_str(), value=reader.read_bytes())
            for _ in range(reader.read_varint())
        ]
        identities = []
        counters = []
        for _ in range(reader.read_varint()):
            identities.append(IdentityRef.from_string(reader.read_str()))
            counters.append(reader.read_u64())
        signatures = [reader.read_bytes() for _ in range(reader.read_varint())]
        return cls(
            instance_id=instance_id,
            kind=kind,
            contract_id=contract_id,
            command=command,
            args=args,
            signer_identities=identities,
            signer_counters=counters,
            signatures=signatures,
        )


@dataclass
class ClientTransaction:
    """
    Atomic batch of instructions submitted to the ledger.

    A transaction whose instructions all carry no signer is anonymous; the
    ledger only accepts those for commands that authorize themselves.
    """
    instructions: List[Instruction] = field(default_factory=list)
    version: int = PROTOCOL_VERSION

    @property
    def is_anonymous(self) -> bool:
        return all(inst.is_anonymous for inst in self.instructions)

    def digest(self) -> Hash:
        writer = ByteWriter()
        writer.write_raw(DOMAIN_TRANSACTION)
        writer.write_u8(self.version)
        for inst in self.instructions:
            writer.write_raw(inst.hash().data)
        return Hash.digest(writer.to_bytes())

    def sign_with(self, signers: Sequence[Signer]) -> None:
        """
        Sign the transaction digest once per instruction.

        Raises:
            ValueError: If an instruction's counters were not set for signers
        """
        identities = [signer.identity for signer in signers]
        for inst in self.instructions:
            if inst.signer_identities != identities:
                raise ValueError(
                    "Instruction signers do not match; call update_counters first"
                )
        digest = self.digest().data
        for inst in self.instructions:
            inst.signatures = [signer.sign(digest) for signer in signers]

    def serialize(self) -> bytes:
        writer = ByteWriter()
        writer.write_u8(self.version)
        writer.write_varint(len(self.instructions))
        for inst in self.instructions:
            inst.write(writer)
        return writer.to_bytes()

    @classmethod
    def deserialize(cls, data: bytes) -> ClientTransaction:
        reader = ByteReader(data)
        version = reader.read_u8()
        instructions = [Instruction.read(reader) for _ in range(reader.read_varint())]
        reader.expect_end()
        return cls(instructions=instructions, version=version)
