"""
Access rules, credentials and their resolvers.

An AccessRule maps actions ("invoke:popParty.finalize", ...) to the identity
references allowed to perform them. Organizers of a party are the identities
of its finalize action; each resolves to a credential instance holding the
organizer's personhood key.

Resolution is a typed request to the ledger, never expression parsing.
"""

from __future__ import annotations
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Mapping, Sequence, Tuple

from popparty.constants import (
    CONTRACT_CREDENTIAL,
    CONTRACT_DARC,
    CREDENTIAL_ATTR_ED25519,
    CREDENTIAL_GROUP_PERSONHOOD,
    DOMAIN_CREDENTIAL_ID,
    POINT_SIZE,
)
from popparty.core.serialization import ByteReader, ByteWriter
from popparty.core.types import IdentityRef, InstanceID, PublicKey
from popparty.errors import MissingCredential, ProofMismatch
from popparty.ledger.client import LedgerClient, fetch_value

logger = logging.getLogger(__name__)


def credential_instance_id(identity: IdentityRef) -> InstanceID:
    """Instance id of the credential belonging to identity."""
    return InstanceID.derive(DOMAIN_CREDENTIAL_ID, identity.value)


@dataclass(frozen=True)
class AccessRule:
    """Action -> authorized identities."""
    rules: Mapping[str, Tuple[IdentityRef, ...]] = field(default_factory=dict)

    def identities(self, action: str) -> FrozenSet[IdentityRef]:
        return frozenset(self.rules.get(action, ()))

    def allows(self, action: str, identity: IdentityRef) -> bool:
        return identity in self.identities(action)

    def serialize(self) -> bytes:
        writer = ByteWriter()
        writer.write_varint(len(self.rules))
        for action in sorted(self.rules):
            writer.write_str(action)
            identities = sorted(set(self.rules[action]))
            writer.write_varint(len(identities))
            for identity in identities:
                writer.write_str(str(identity))
        return writer.to_bytes()

    @classmethod
    def deserialize(cls, data: bytes) -> AccessRule:
        reader = ByteReader(data)
        rules: Dict[str, Tuple[IdentityRef, ...]] = {}
        for _ in range(reader.read_varint()):
            action = reader.read_str()
            rules[action] = tuple(
                IdentityRef.from_string(reader.read_str())
                for _ in range(reader.read_varint())
            )
        reader.expect_end()
        return cls(rules=rules)


def rule_instance_id(rule: AccessRule, label: bytes = b"") -> InstanceID:
    """Instance id an access rule is stored under."""
    return InstanceID.derive(CONTRACT_DARC.encode(), label, rule.serialize())


@dataclass(frozen=True)
class Credential:
    """Credential record: attribute groups of named byte values."""
    attributes: Mapping[str, Mapping[str, bytes]] = field(default_factory=dict)

    @classmethod
    def personhood(cls, public_key: PublicKey) -> Credential:
        return cls(attributes={
            CREDENTIAL_GROUP_PERSONHOOD: {CREDENTIAL_ATTR_ED25519: public_key.data},
        })

    def get(self, group: str, name: str):
        return self.attributes.get(group, {}).get(name)

    def serialize(self) -> bytes:
        writer = ByteWriter()
        writer.write_varint(len(self.attributes))
        for group in sorted(self.attributes):
            attrs = self.attributes[group]
            writer.write_str(group)
            writer.write_varint(len(attrs))
            for name in sorted(attrs):
                writer.write_str(name)
                writer.write_bytes(attrs[name])
        return writer.to_bytes()

    @classmethod
    def deserialize(cls, data: bytes) -> Credential:
        reader = ByteReader(data)
        attributes: Dict[str, Dict[str, bytes]] = {}
        for _ in range(reader.read_varint()):
            group = reader.read_str()
            attributes[group] = {
                reader.read_str(): reader.read_bytes()
                for _ in range(reader.read_varint())
            }
        reader.expect_end()
        return cls(attributes=attributes)


class AccessControlResolver(ABC):
    """Answers which identities may perform an action under a rule."""

    @abstractmethod
    async def authorized_identities(self, rule_id: bytes, action: str) -> FrozenSet[IdentityRef]:
        ...


class CredentialResolver(ABC):
    """Resolves an identity to its personhood public key."""

    @abstractmethod
    async def resolve_credential(self, identity: IdentityRef) -> PublicKey:
        """
        Raises:
            MissingCredential: If no usable personhood credential exists
        """


class LedgerAccessResolver(AccessControlResolver):
    """Reads access rules stored as darc instances."""

    def __init__(self, ledger: LedgerClient):
        self.ledger = ledger

    async def authorized_identities(self, rule_id: bytes, action: str) -> FrozenSet[IdentityRef]:
        proof = await fetch_value(self.ledger, InstanceID(rule_id), CONTRACT_DARC)
        identities = AccessRule.deserialize(proof.decode()).identities(action)
        logger.debug(f"Rule {rule_id.hex()[:16]} allows {len(identities)} identities for {action}")
        return identities


class LedgerCredentialResolver(CredentialResolver):
    """Reads personhood keys from credential instances."""

    def __init__(self, ledger: LedgerClient):
        self.ledger = ledger

    async def resolve_credential(self, identity: IdentityRef) -> PublicKey:
        iid = credential_instance_id(identity)
        try:
            proof = await fetch_value(self.ledger, iid, CONTRACT_CREDENTIAL)
        except ProofMismatch as e:
            raise MissingCredential(str(identity), e.message)

        key = Credential.deserialize(proof.decode()).get(
            CREDENTIAL_GROUP_PERSONHOOD, CREDENTIAL_ATTR_ED25519
        )
        if key is None or len(key) != POINT_SIZE:
            raise MissingCredential(str(identity), "no personhood ed25519 attribute")
        return PublicKey(key)


async def resolve_organizer_keys(
    rule_id: bytes,
    action: str,
    access: AccessControlResolver,
    credentials: CredentialResolver,
) -> Sequence[PublicKey]:
    """Personhood keys of every identity allowed to perform action."""
    identities = await access.authorized_identities(rule_id, action)
    keys = []
    for identity in sorted(identities):
        keys.append(await credentials.resolve_credential(identity))
    return keys
