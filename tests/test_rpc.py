"""
PoP Party JSON-RPC Ledger Client Tests

The remote node is simulated with httpx.MockTransport bridging to a
MemoryLedger.
"""

import json

import httpx
import pytest

from popparty.config import LedgerConfig
from popparty.constants import CMD_BARRIER, CONTRACT_POP_PARTY
from popparty.core.party import PartyState
from popparty.core.types import IdentityRef, InstanceID
from popparty.errors import ErrorCode, LedgerSubmissionFailed, PopPartyError, ProofMismatch
from popparty.ledger.rpc import RPCLedgerClient
from popparty.ledger.transaction import ClientTransaction, Instruction
from popparty.party.instance import PopPartyInstance

URL = "http://ledger.test/rpc"


def rpc_result(request_id, result):
    return httpx.Response(200, json={"jsonrpc": "2.0", "id": request_id, "result": result})


def rpc_error(request_id, code, message, data=None):
    error = {"code": code, "message": message}
    if data is not None:
        error["data"] = data
    return httpx.Response(200, json={"jsonrpc": "2.0", "id": request_id, "error": error})


class LedgerBridge:
    """JSON-RPC node in front of a MemoryLedger."""

    def __init__(self, ledger):
        self.ledger = ledger
        self.calls = []
        self.fail_next = 0
        # Commit the next submission, then drop its response
        self.lose_next_response = 0

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        self.calls.append(body["method"])
        if self.fail_next:
            self.fail_next -= 1
            raise httpx.ConnectError("connection refused", request=request)

        params = body["params"]
        if body["method"] == "submit_transaction":
            tx = ClientTransaction.deserialize(bytes.fromhex(params["transaction"]))
            try:
                outcome = await self.ledger.submit_and_await(tx)
            except LedgerSubmissionFailed as e:
                return rpc_error(body["id"], int(e.code), e.reason, e.details)
            except PopPartyError as e:
                return rpc_error(body["id"], int(e.code), e.message)
            if self.lose_next_response:
                self.lose_next_response -= 1
                raise httpx.ReadTimeout("response lost", request=request)
            return rpc_result(body["id"], {
                "tx_hash": outcome.tx_hash.hex(),
                "block_index": outcome.block_index,
            })
        if body["method"] == "get_proof":
            proof = await self.ledger.get_proof(InstanceID.from_hex(params["instance_id"]))
            return rpc_result(body["id"], {"proof": proof.serialize().hex()})
        if body["method"] == "get_signer_counters":
            identities = [IdentityRef.from_string(text) for text in params["identities"]]
            counters = await self.ledger.get_signer_counters(identities)
            return rpc_result(body["id"], {"counters": counters})
        return rpc_error(body["id"], -32601, "method not found")


@pytest.fixture
def bridge(ledger):
    return LedgerBridge(ledger)


@pytest.fixture
def rpc_client(bridge):
    http = httpx.AsyncClient(transport=httpx.MockTransport(bridge))
    return RPCLedgerClient(URL, retry_backoff=0.0, client=http)


class TestRPCLedgerClient:

    @pytest.mark.asyncio
    async def test_full_party_over_rpc(
        self, ledger, bridge, rpc_client, organizer, description, party_rule, attendees
    ):
        party = await PopPartyInstance.spawn(rpc_client, organizer, description, party_rule, 7)
        await party.activate_barrier(organizer)
        for pair in attendees:
            await party.add_attendee(pair.public)
        assert await party.finalize(organizer)
        assert party.state == PartyState.FINALIZED

        target = ledger.put_coin(b"alice")
        await party.mine(attendees[0].secret, target)
        assert ledger.coin_balance(target) == 7
        assert "submit_transaction" in bridge.calls
        await rpc_client.close()

    @pytest.mark.asyncio
    async def test_retry_on_transport_error(self, ledger, bridge, rpc_client, party_rule):
        bridge.fail_next = 2
        proof = await rpc_client.get_proof(party_rule)
        assert proof.matches(party_rule)
        assert bridge.calls == ["get_proof"] * 3

    @pytest.mark.asyncio
    async def test_retries_exhausted(self, bridge, rpc_client, party_rule):
        bridge.fail_next = 10
        with pytest.raises(ProofMismatch):
            await rpc_client.get_proof(party_rule)
        assert len(bridge.calls) == rpc_client.max_retries + 1

    @pytest.mark.asyncio
    async def test_counters_retries_exhausted(self, bridge, rpc_client, organizer):
        bridge.fail_next = 10
        with pytest.raises(LedgerSubmissionFailed):
            await rpc_client.get_signer_counters([organizer.identity])

    @pytest.mark.asyncio
    async def test_ledger_rejection(self, rpc_client, party, organizer):
        stale_handle = await PopPartyInstance.from_ledger(rpc_client, party.instance_id)
        await party.activate_barrier(organizer)
        with pytest.raises(LedgerSubmissionFailed, match="configuration mode"):
            await stale_handle.activate_barrier(organizer)

    @pytest.mark.asyncio
    async def test_rejection_reason_not_repeated(self, rpc_client, party, organizer):
        stale_handle = await PopPartyInstance.from_ledger(rpc_client, party.instance_id)
        await party.activate_barrier(organizer)
        with pytest.raises(LedgerSubmissionFailed) as exc:
            await stale_handle.activate_barrier(organizer)
        assert exc.value.message.count("Ledger rejected transaction") == 1
        assert exc.value.reason.startswith("can only start barrier point")

    @pytest.mark.asyncio
    async def test_committed_submission_with_lost_response(
        self, ledger, bridge, rpc_client, organizer, description, party_rule
    ):
        party = await PopPartyInstance.spawn(rpc_client, organizer, description, party_rule, 7)
        submissions = ledger.submissions

        bridge.lose_next_response = 1
        await party.activate_barrier(organizer)

        assert party.state == PartyState.SCANNING
        assert ledger.submissions == submissions + 2
        assert bridge.calls.count("submit_transaction") == 3

    @pytest.mark.asyncio
    async def test_lost_response_keeps_block_index(self, ledger, bridge, rpc_client, party, organizer):
        inst = Instruction.create_invoke(party.instance_id, CONTRACT_POP_PARTY, CMD_BARRIER, [])
        await inst.update_counters(rpc_client, [organizer])
        tx = ClientTransaction([inst])
        tx.sign_with([organizer])

        bridge.lose_next_response = 1
        outcome = await rpc_client.submit_and_await(tx)
        assert outcome.tx_hash == tx.digest()
        assert outcome.block_index == ledger.block_index

    @pytest.mark.asyncio
    async def test_first_attempt_duplicate_is_still_an_error(self, ledger, rpc_client, party, organizer):
        inst = Instruction.create_invoke(party.instance_id, CONTRACT_POP_PARTY, CMD_BARRIER, [])
        await inst.update_counters(rpc_client, [organizer])
        tx = ClientTransaction([inst])
        tx.sign_with([organizer])
        await ledger.submit_and_await(tx)

        with pytest.raises(LedgerSubmissionFailed, match="already applied"):
            await rpc_client.submit_and_await(tx)

    @pytest.mark.asyncio
    async def test_duplicate_of_other_digest_is_an_error(self, organizer):
        attempts = []

        def handler(request):
            body = json.loads(request.content)
            attempts.append(body["method"])
            if len(attempts) == 1:
                raise httpx.ReadTimeout("response lost", request=request)
            return rpc_error(
                body["id"], int(ErrorCode.TRANSACTION_ALREADY_APPLIED),
                "transaction already applied", {"tx": "00" * 32, "block_index": 3},
            )

        client = RPCLedgerClient(
            URL, retry_backoff=0.0,
            client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        )
        inst = Instruction.create_invoke(InstanceID.derive(b"p"), CONTRACT_POP_PARTY, CMD_BARRIER, [])
        inst.signer_identities = [organizer.identity]
        inst.signer_counters = [1]
        tx = ClientTransaction([inst])
        tx.sign_with([organizer])
        with pytest.raises(LedgerSubmissionFailed, match="already applied"):
            await client.submit_and_await(tx)
        assert len(attempts) == 2

    @pytest.mark.asyncio
    async def test_absent_instance(self, rpc_client):
        with pytest.raises(ProofMismatch):
            await PopPartyInstance.from_ledger(rpc_client, InstanceID.derive(b"absent"))

    @pytest.mark.asyncio
    async def test_http_error_not_retried(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(500)

        client = RPCLedgerClient(
            URL, retry_backoff=0.0,
            client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        )
        with pytest.raises(ProofMismatch, match="HTTP 500"):
            await client.get_proof(InstanceID.derive(b"x"))
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_wrong_counter_count(self, organizer):
        def handler(request):
            body = json.loads(request.content)
            return rpc_result(body["id"], {"counters": [1, 2]})

        client = RPCLedgerClient(URL, client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))
        with pytest.raises(LedgerSubmissionFailed, match="expected 1 counters"):
            await client.get_signer_counters([organizer.identity])

    @pytest.mark.asyncio
    async def test_request_shape(self, organizer):
        seen = {}

        def handler(request):
            body = json.loads(request.content)
            seen.update(body)
            return rpc_result(body["id"], {"counters": [4]})

        client = RPCLedgerClient(URL, client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))
        assert await client.get_signer_counters([organizer.identity]) == [4]
        assert seen["jsonrpc"] == "2.0"
        assert seen["method"] == "get_signer_counters"
        assert seen["params"] == {"identities": [str(organizer.identity)]}

    def test_from_config(self):
        config = LedgerConfig(rpc_url=URL, timeout_sec=2.5, max_retries=1, retry_backoff_sec=0.1)
        client = RPCLedgerClient.from_config(config)
        assert client.url == URL
        assert client.timeout == 2.5
        assert client.max_retries == 1
        assert client.retry_backoff == 0.1
