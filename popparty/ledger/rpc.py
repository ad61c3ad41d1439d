"""
JSON-RPC 2.0 ledger client over httpx.

Methods:
    submit_transaction   {"transaction": hex}      -> {"tx_hash": hex, "block_index": int}
    get_proof            {"instance_id": hex}      -> {"proof": hex}
    get_signer_counters  {"identities": [str]}     -> {"counters": [int]}

Binary payloads travel hex-encoded. Transport errors are retried with
linear backoff; JSON-RPC errors are returned by the ledger and are not.
A retried submission the ledger reports as already applied (code 4002)
was committed by an earlier attempt and counts as success.
"""

from __future__ import annotations
import asyncio
import itertools
import logging
from typing import Any, Dict, List, Optional, Sequence, TYPE_CHECKING

import httpx

from popparty.constants import (
    DEFAULT_RPC_MAX_RETRIES,
    DEFAULT_RPC_RETRY_BACKOFF_SEC,
    DEFAULT_RPC_TIMEOUT_SEC,
    DEFAULT_RPC_URL,
)
from popparty.core.types import Hash, IdentityRef, InstanceID
from popparty.errors import ErrorCode, LedgerSubmissionFailed, ProofMismatch
from popparty.ledger.client import LedgerClient, TransactionOutcome
from popparty.ledger.proof import Proof
from popparty.ledger.transaction import ClientTransaction

if TYPE_CHECKING:
    from popparty.config import LedgerConfig

logger = logging.getLogger(__name__)


class RPCError(Exception):
    """Error object returned by the ledger, or an unusable response."""

    def __init__(
        self,
        message: str,
        code: Optional[int] = None,
        data: Any = None,
        attempts: int = 1,
    ):
        self.message = message
        self.code = code
        self.data = data
        # Requests sent, including retries after transport errors
        self.attempts = attempts
        super().__init__(message if code is None else f"{message} (code {code})")


class RPCLedgerClient(LedgerClient):
    """
    Ledger client talking JSON-RPC to a remote node.

    Usage:
        async with RPCLedgerClient("http://127.0.0.1:7770") as ledger:
            party = await PopPartyInstance.from_ledger(ledger, party_id)
    """

    def __init__(
        self,
        url: str = DEFAULT_RPC_URL,
        timeout: float = DEFAULT_RPC_TIMEOUT_SEC,
        max_retries: int = DEFAULT_RPC_MAX_RETRIES,
        retry_backoff: float = DEFAULT_RPC_RETRY_BACKOFF_SEC,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.url = url
        self.timeout = timeout
        self.max_retries = max_retries
        self.retry_backoff = retry_backoff
        self._client = client
        self._owns_client = client is None
        self._ids = itertools.count(1)

    @classmethod
    def from_config(
        cls,
        config: "LedgerConfig",
        client: Optional[httpx.AsyncClient] = None,
    ) -> RPCLedgerClient:
        return cls(
            url=config.rpc_url,
            timeout=config.timeout_sec,
            max_retries=config.max_retries,
            retry_backoff=config.retry_backoff_sec,
            client=client,
        )

    async def __aenter__(self) -> RPCLedgerClient:
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def _call(self, method: str, params: Dict[str, Any]) -> Dict[str, Any]:
        payload = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": method,
            "params": params,
        }

        attempt = 0
        while True:
            try:
                response = await self._http().post(self.url, json=payload, timeout=self.timeout)
                response.raise_for_status()
                body = response.json()
                break
            except httpx.TransportError as e:
                attempt += 1
                if attempt > self.max_retries:
                    raise RPCError(f"{method} failed after {attempt} attempts: {e}")
                delay = self.retry_backoff * attempt
                logger.warning(f"{method} transport error ({e}); retry {attempt} in {delay:.1f}s")
                await asyncio.sleep(delay)
            except httpx.HTTPStatusError as e:
                raise RPCError(f"{method} returned HTTP {e.response.status_code}")
            except ValueError as e:
                raise RPCError(f"{method} returned invalid JSON: {e}")

        if not isinstance(body, dict):
            raise RPCError(f"{method} returned a non-object response")
        if body.get("error") is not None:
            error = body["error"]
            if isinstance(error, dict):
                raise RPCError(
                    str(error.get("message", "unknown error")),
                    error.get("code"),
                    error.get("data"),
                    attempt + 1,
                )
            raise RPCError(str(error), attempts=attempt + 1)
        result = body.get("result")
        if not isinstance(result, dict):
            raise RPCError(f"{method} returned no result")
        return result

    async def submit_and_await(self, transaction: ClientTransaction) -> TransactionOutcome:
        digest = transaction.digest()
        try:
            result = await self._call(
                "submit_transaction",
                {"transaction": transaction.serialize().hex()},
            )
            outcome = TransactionOutcome(
                tx_hash=Hash.from_hex(result["tx_hash"]),
                block_index=int(result["block_index"]),
            )
        except RPCError as e:
            outcome = self._committed_by_retry(e, digest)
            if outcome is None:
                raise LedgerSubmissionFailed(e.message, digest.data) from e
        except (KeyError, ValueError, TypeError) as e:
            raise LedgerSubmissionFailed(f"malformed submit result: {e}", digest.data) from e

        if outcome.tx_hash != digest:
            raise LedgerSubmissionFailed("ledger acknowledged a different transaction", digest.data)
        logger.info(f"Transaction {digest.hex()[:16]} included in block {outcome.block_index}")
        return outcome

    @staticmethod
    def _committed_by_retry(error: RPCError, digest: Hash) -> Optional[TransactionOutcome]:
        """
        Outcome of a submission whose first attempt was committed but lost.

        Only a retried request may read "already applied" as success, and
        only for this transaction's digest.
        """
        if error.code != ErrorCode.TRANSACTION_ALREADY_APPLIED or error.attempts < 2:
            return None
        data = error.data if isinstance(error.data, dict) else {}
        if data.get("tx") != digest.hex():
            return None
        try:
            block_index = int(data.get("block_index", 0))
        except (TypeError, ValueError):
            block_index = 0
        logger.info(f"Transaction {digest.hex()[:16]} was committed before the retry")
        return TransactionOutcome(tx_hash=digest, block_index=block_index)

    async def get_proof(self, instance_id: InstanceID) -> Proof:
        try:
            result = await self._call("get_proof", {"instance_id": instance_id.hex()})
            return Proof.deserialize(bytes.fromhex(result["proof"]))
        except RPCError as e:
            raise ProofMismatch(instance_id.data, e.message) from e
        except (KeyError, ValueError, TypeError) as e:
            raise ProofMismatch(instance_id.data, f"malformed proof: {e}") from e

    async def get_signer_counters(self, identities: Sequence[IdentityRef]) -> List[int]:
        try:
            result = await self._call(
                "get_signer_counters",
                {"identities": [str(identity) for identity in identities]},
            )
            counters = [int(counter) for counter in result["counters"]]
        except RPCError as e:
            raise LedgerSubmissionFailed(f"couldn't fetch signer counters: {e.message}") from e
        except (KeyError, ValueError, TypeError) as e:
            raise LedgerSubmissionFailed(f"malformed counters: {e}") from e

        if len(counters) != len(identities):
            raise LedgerSubmissionFailed(
                f"expected {len(identities)} counters, got {len(counters)}"
            )
        return counters
