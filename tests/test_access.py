"""
PoP Party Access Rule and Credential Tests
"""

import pytest

from popparty.constants import (
    CREDENTIAL_ATTR_ED25519,
    CREDENTIAL_GROUP_PERSONHOOD,
    RULE_INVOKE_FINALIZE,
)
from popparty.core.types import IdentityRef, InstanceID, KeyPair
from popparty.errors import MissingCredential, ProofMismatch
from popparty.ledger.access import (
    AccessRule,
    Credential,
    LedgerAccessResolver,
    LedgerCredentialResolver,
    credential_instance_id,
    resolve_organizer_keys,
    rule_instance_id,
)
from popparty.ledger.contract import StateEntry
from popparty.ledger.transaction import Signer

from conftest import party_rules


class TestAccessRule:

    def test_round_trip(self, organizer, organizer_2):
        rule = AccessRule(rules={
            RULE_INVOKE_FINALIZE: (organizer_2.identity, organizer.identity),
        })
        restored = AccessRule.deserialize(rule.serialize())
        assert restored.identities(RULE_INVOKE_FINALIZE) == {organizer.identity, organizer_2.identity}

    def test_serialization_is_order_independent(self, organizer, organizer_2):
        one = AccessRule(rules={RULE_INVOKE_FINALIZE: (organizer.identity, organizer_2.identity)})
        two = AccessRule(rules={RULE_INVOKE_FINALIZE: (organizer_2.identity, organizer.identity)})
        assert one.serialize() == two.serialize()

    def test_allows(self, organizer, organizer_2):
        rule = AccessRule(rules={RULE_INVOKE_FINALIZE: (organizer.identity,)})
        assert rule.allows(RULE_INVOKE_FINALIZE, organizer.identity)
        assert not rule.allows(RULE_INVOKE_FINALIZE, organizer_2.identity)
        assert not rule.allows("invoke:popParty.barrier", organizer.identity)

    def test_stored_under_rule_instance_id(self, ledger, organizer):
        rules = party_rules(organizer)
        rule = AccessRule(rules={action: tuple(ids) for action, ids in rules.items()})
        assert ledger.put_rule(rules) == rule_instance_id(rule)
        assert ledger.put_rule(rules, label=b"other") != rule_instance_id(rule)


class TestCredential:

    def test_personhood(self):
        pair = KeyPair.generate()
        credential = Credential.personhood(pair.public)
        restored = Credential.deserialize(credential.serialize())
        assert restored.get(CREDENTIAL_GROUP_PERSONHOOD, CREDENTIAL_ATTR_ED25519) == pair.public.data
        assert restored.get("personhood", "missing") is None

    def test_instance_id_depends_on_identity(self, organizer, organizer_2):
        assert credential_instance_id(organizer.identity) != credential_instance_id(organizer_2.identity)


class TestLedgerResolvers:
    """Resolvers reading rules and credentials from the ledger."""

    @pytest.mark.asyncio
    async def test_authorized_identities(self, ledger, organizer, organizer_2):
        rule_id = ledger.put_rule(party_rules(organizer, organizer_2))
        identities = await LedgerAccessResolver(ledger).authorized_identities(
            rule_id.data, RULE_INVOKE_FINALIZE
        )
        assert identities == frozenset({organizer.identity, organizer_2.identity})

    @pytest.mark.asyncio
    async def test_unknown_rule(self, ledger):
        with pytest.raises(ProofMismatch):
            await LedgerAccessResolver(ledger).authorized_identities(
                InstanceID.derive(b"nothing").data, RULE_INVOKE_FINALIZE
            )

    @pytest.mark.asyncio
    async def test_resolve_credential(self, ledger, organizer, organizer_keypair):
        ledger.put_credential(organizer.identity, organizer_keypair.public)
        key = await LedgerCredentialResolver(ledger).resolve_credential(organizer.identity)
        assert key == organizer_keypair.public

    @pytest.mark.asyncio
    async def test_missing_credential(self, ledger, organizer):
        with pytest.raises(MissingCredential) as exc:
            await LedgerCredentialResolver(ledger).resolve_credential(organizer.identity)
        assert exc.value.code == 3002

    @pytest.mark.asyncio
    async def test_credential_without_personhood_key(self, ledger, organizer):
        iid = credential_instance_id(organizer.identity)
        ledger._put(iid, StateEntry("credential", Credential(attributes={"other": {}}).serialize(), b""))
        with pytest.raises(MissingCredential):
            await LedgerCredentialResolver(ledger).resolve_credential(organizer.identity)

    @pytest.mark.asyncio
    async def test_resolve_organizer_keys(
        self, ledger, organizer, organizer_2, organizer_keypair, organizer_2_keypair
    ):
        ledger.put_credential(organizer.identity, organizer_keypair.public)
        ledger.put_credential(organizer_2.identity, organizer_2_keypair.public)
        rule_id = ledger.put_rule(party_rules(organizer, organizer_2))

        keys = await resolve_organizer_keys(
            rule_id.data,
            RULE_INVOKE_FINALIZE,
            LedgerAccessResolver(ledger),
            LedgerCredentialResolver(ledger),
        )
        assert set(keys) == {organizer_keypair.public, organizer_2_keypair.public}

    @pytest.mark.asyncio
    async def test_one_missing_credential_fails_all(self, ledger, organizer, organizer_keypair):
        stranger = Signer.generate()
        ledger.put_credential(organizer.identity, organizer_keypair.public)
        rule_id = ledger.put_rule(party_rules(organizer, stranger))

        with pytest.raises(MissingCredential):
            await resolve_organizer_keys(
                rule_id.data,
                RULE_INVOKE_FINALIZE,
                LedgerAccessResolver(ledger),
                LedgerCredentialResolver(ledger),
            )

    def test_identity_kind(self, organizer):
        assert isinstance(organizer.identity, IdentityRef)
        assert organizer.identity.kind == "ed25519"
