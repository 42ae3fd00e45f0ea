"""
Transaction relays.

A relay dry-runs a signed transaction against the next block and submits it.
``FlashbotsRelay`` sends it privately to a Flashbots-compatible relay so it
never touches the public mempool; ``PublicMempoolRelay`` uses the node itself.
Both hand back a :class:`SubmissionHandle` that resolves inclusion.
"""

import asyncio
import json
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional

import requests
from eth_account.messages import encode_defunct
from eth_account.signers.local import LocalAccount
from web3 import Web3
from web3.exceptions import ContractLogicError, TransactionNotFound

from ..exceptions import ExecutionError, NetworkError
from ..utils import get_logger
from ..version import USER_AGENT

logger = get_logger(__name__)

NONCE_ERROR_MARKERS = (
    "nonce too low",
    "already known",
    "replacement transaction underpriced",
)


def is_nonce_error(message: str) -> bool:
    """True if a node or relay error means our nonce was already taken."""
    lowered = message.lower()
    return any(marker in lowered for marker in NONCE_ERROR_MARKERS)


class PrecheckStatus(str, Enum):
    SUCCESS = "success"
    REVERTED = "reverted"
    ERROR = "error"


@dataclass
class PrecheckResult:
    """Outcome of a dry run against the next block."""

    status: PrecheckStatus
    reason: Optional[str] = None
    gas_used: Optional[int] = None

    @property
    def succeeded(self) -> bool:
        return self.status == PrecheckStatus.SUCCESS


class InclusionStatus(str, Enum):
    INCLUDED = "included"
    NOT_INCLUDED = "not_included"
    NONCE_CONFLICT = "nonce_conflict"


@dataclass
class Resolution:
    """Final state of a submitted transaction."""

    status: InclusionStatus
    tx_hash: str
    receipt: Optional[Dict[str, Any]] = None
    reason: Optional[str] = None

    @property
    def succeeded_on_chain(self) -> bool:
        return (
            self.status == InclusionStatus.INCLUDED
            and self.receipt is not None
            and self.receipt.get("status") == 1
        )

    @property
    def gas_used(self) -> Optional[int]:
        if self.receipt is None:
            return None
        return self.receipt.get("gasUsed")


@dataclass
class PreparedTransaction:
    """A built and signed transaction ready for precheck and submission."""

    tx: Dict[str, Any]
    raw: bytes
    tx_hash: str
    sender: str
    nonce: int
    block_number: int

    @property
    def raw_hex(self) -> str:
        return Web3.to_hex(self.raw)


class SubmissionHandle:
    """
    Tracks one submitted transaction until it is mined or its window closes.

    Args:
        web3: Connected Web3 instance
        prepared: The submitted transaction
        max_block_number: Last block the transaction may land in
        poll_interval: Seconds between receipt polls
        timeout_seconds: Give up and report not-included after this long
    """

    def __init__(
        self,
        web3: Web3,
        prepared: PreparedTransaction,
        max_block_number: int,
        poll_interval: float = 1.0,
        timeout_seconds: float = 120.0,
    ):
        self.web3 = web3
        self.prepared = prepared
        self.max_block_number = max_block_number
        self.poll_interval = poll_interval
        self.timeout_seconds = timeout_seconds

    @property
    def tx_hash(self) -> str:
        return self.prepared.tx_hash

    def _receipt(self) -> Optional[Dict[str, Any]]:
        try:
            return self.web3.eth.get_transaction_receipt(self.tx_hash)
        except TransactionNotFound:
            return None

    async def wait(self) -> Resolution:
        """
        Poll until the transaction is mined or can no longer be.

        Returns:
            INCLUDED with the receipt, NOT_INCLUDED once the block window has
            passed, or NONCE_CONFLICT when another transaction used our nonce
        """
        loop = asyncio.get_event_loop()
        start = time.time()

        while True:
            try:
                receipt = await loop.run_in_executor(None, self._receipt)
                if receipt:
                    return Resolution(
                        InclusionStatus.INCLUDED, self.tx_hash, receipt=dict(receipt)
                    )

                block_number = await loop.run_in_executor(
                    None, lambda: self.web3.eth.block_number
                )
                if block_number > self.max_block_number:
                    return await self._resolve_missed(loop)
            except Exception as e:
                logger.warning(f"Error polling for {self.tx_hash}: {e}")

            if time.time() - start > self.timeout_seconds:
                return Resolution(
                    InclusionStatus.NOT_INCLUDED,
                    self.tx_hash,
                    reason=f"not confirmed after {self.timeout_seconds:.0f}s",
                )
            await asyncio.sleep(self.poll_interval)

    async def _resolve_missed(self, loop) -> Resolution:
        confirmed_nonce = await loop.run_in_executor(
            None,
            self.web3.eth.get_transaction_count,
            self.prepared.sender,
            "latest",
        )
        if confirmed_nonce > self.prepared.nonce:
            # Our nonce is spent; make sure it was not spent by us
            receipt = await loop.run_in_executor(None, self._receipt)
            if receipt:
                return Resolution(InclusionStatus.INCLUDED, self.tx_hash, receipt=dict(receipt))
            return Resolution(
                InclusionStatus.NONCE_CONFLICT,
                self.tx_hash,
                reason=f"nonce {self.prepared.nonce} consumed by another transaction",
            )
        return Resolution(
            InclusionStatus.NOT_INCLUDED,
            self.tx_hash,
            reason=f"block {self.max_block_number} passed without inclusion",
        )


class BaseRelay:
    """Relay interface used by the execution pipeline."""

    name = "base"

    def __init__(self, web3: Web3, inclusion_blocks: int = 3, poll_interval: float = 1.0):
        self.web3 = web3
        self.inclusion_blocks = inclusion_blocks
        self.poll_interval = poll_interval

    def max_block_for(self, target_block: int) -> int:
        return target_block + self.inclusion_blocks - 1

    async def simulate(self, prepared: PreparedTransaction, target_block: int) -> PrecheckResult:
        raise NotImplementedError

    async def submit(self, prepared: PreparedTransaction, target_block: int) -> SubmissionHandle:
        raise NotImplementedError

    def _handle(self, prepared: PreparedTransaction, target_block: int) -> SubmissionHandle:
        return SubmissionHandle(
            self.web3,
            prepared,
            max_block_number=self.max_block_for(target_block),
            poll_interval=self.poll_interval,
        )


class FlashbotsRelay(BaseRelay):
    """
    Private submission through a Flashbots-compatible relay.

    Requests are signed with a dedicated auth key that identifies the
    searcher; it holds no funds and is unrelated to the transaction signer.
    """

    name = "flashbots"

    def __init__(
        self,
        web3: Web3,
        auth_account: LocalAccount,
        relay_url: str = "https://relay.flashbots.net",
        inclusion_blocks: int = 3,
        poll_interval: float = 1.0,
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
    ):
        super().__init__(web3, inclusion_blocks, poll_interval)
        self.auth_account = auth_account
        self.relay_url = relay_url
        self.timeout = timeout
        self.session = session or requests.Session()
        self._request_id = 0

    def _signature_header(self, body: str) -> str:
        message = encode_defunct(text=Web3.to_hex(Web3.keccak(text=body)))
        signed = self.auth_account.sign_message(message)
        return f"{self.auth_account.address}:{Web3.to_hex(signed.signature)}"

    def _post(self, method: str, params: List[Any]) -> Dict[str, Any]:
        self._request_id += 1
        body = json.dumps(
            {"jsonrpc": "2.0", "id": self._request_id, "method": method, "params": params}
        )
        headers = {
            "Content-Type": "application/json",
            "User-Agent": USER_AGENT,
            "X-Flashbots-Signature": self._signature_header(body),
        }
        try:
            response = self.session.post(
                self.relay_url, data=body, headers=headers, timeout=self.timeout
            )
            response.raise_for_status()
            return response.json()
        except requests.HTTPError as e:
            status = e.response.status_code if e.response is not None else None
            raise NetworkError(
                f"{method} failed: HTTP {status}", endpoint=self.relay_url, status_code=status
            ) from e
        except (requests.RequestException, ValueError) as e:
            raise NetworkError(f"{method} failed: {e}", endpoint=self.relay_url) from e

    async def _call(self, method: str, params: List[Any]) -> Dict[str, Any]:
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(None, self._post, method, params)

    async def simulate(self, prepared: PreparedTransaction, target_block: int) -> PrecheckResult:
        params = [
            {
                "txs": [prepared.raw_hex],
                "blockNumber": hex(target_block),
                "stateBlockNumber": "latest",
            }
        ]
        try:
            response = await self._call("eth_callBundle", params)
        except NetworkError as e:
            return PrecheckResult(PrecheckStatus.ERROR, reason=str(e))

        if "error" in response:
            error = response["error"]
            message = error.get("message") if isinstance(error, dict) else str(error)
            return PrecheckResult(PrecheckStatus.ERROR, reason=message)

        result = response.get("result") or {}
        gas_used = result.get("totalGasUsed")
        for tx_result in result.get("results", []):
            revert = tx_result.get("revert") or tx_result.get("error")
            if revert:
                return PrecheckResult(PrecheckStatus.REVERTED, reason=revert, gas_used=gas_used)
        first_revert = result.get("firstRevert")
        if first_revert:
            reason = first_revert.get("revert") or first_revert.get("error") or "unknown revert"
            return PrecheckResult(PrecheckStatus.REVERTED, reason=reason, gas_used=gas_used)

        return PrecheckResult(PrecheckStatus.SUCCESS, gas_used=gas_used)

    async def submit(self, prepared: PreparedTransaction, target_block: int) -> SubmissionHandle:
        max_block = self.max_block_for(target_block)
        params = [
            {
                "tx": prepared.raw_hex,
                "maxBlockNumber": hex(max_block),
                "preferences": {"fast": True},
            }
        ]
        response = await self._call("eth_sendPrivateTransaction", params)
        if "error" in response:
            error = response["error"]
            message = error.get("message") if isinstance(error, dict) else str(error)
            raise ExecutionError(f"Relay rejected transaction: {message}", stage="submit")

        logger.info(
            f"Private transaction {prepared.tx_hash} sent to {self.relay_url} "
            f"(blocks {target_block}-{max_block})"
        )
        return self._handle(prepared, target_block)


class PublicMempoolRelay(BaseRelay):
    """Submission through the connected node's public mempool."""

    name = "public"

    async def simulate(self, prepared: PreparedTransaction, target_block: int) -> PrecheckResult:
        call = {
            key: prepared.tx[key]
            for key in ("from", "to", "data", "value", "gas")
            if key in prepared.tx
        }
        loop = asyncio.get_event_loop()
        try:
            await loop.run_in_executor(None, self.web3.eth.call, call, "pending")
        except ContractLogicError as e:
            return PrecheckResult(PrecheckStatus.REVERTED, reason=str(e))
        except Exception as e:
            return PrecheckResult(PrecheckStatus.ERROR, reason=str(e))
        return PrecheckResult(PrecheckStatus.SUCCESS)

    async def submit(self, prepared: PreparedTransaction, target_block: int) -> SubmissionHandle:
        loop = asyncio.get_event_loop()
        await loop.run_in_executor(None, self.web3.eth.send_raw_transaction, prepared.raw)
        logger.warning(
            f"Transaction {prepared.tx_hash} broadcast to the public mempool "
            "(not MEV-protected)"
        )
        return self._handle(prepared, target_block)
