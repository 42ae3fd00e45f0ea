"""
Execution pipeline for profitable peg arbitrage simulations.

One :class:`ExecutionAttempt` per call walks a fixed state machine:

    IDLE -> SIMULATED -> PARAMS_COMPUTED -> TX_BUILT -> PRECHECK_SIMULATED
         -> SUBMITTED -> RESOLVED

and drops to ABORTED at the first failed gate. Every attempt ends with an
:class:`ExecutionOutcome`; nothing is raised for an expected failure.
Submission is serialized by an ``asyncio.Lock`` because the signer's nonce is
shared by every attempt.
"""

import asyncio
import json
import logging
import time
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from eth_account.signers.local import LocalAccount
from web3 import Web3

from ..amounts import from_raw
from ..config_schema import BotConfig
from ..exceptions import ExecutionError, MissingAddressError
from ..types import ArbitrageScenario, ProfitSimulation
from ..utils import apply_bps_haircut, bps_to_percent, format_duration, get_logger
from .abi import ARBITRAGE_EXECUTOR_ABI, ENTRY_POINTS
from .relay import (
    BaseRelay,
    InclusionStatus,
    PrecheckResult,
    PrecheckStatus,
    PreparedTransaction,
    Resolution,
    is_nonce_error,
)

logger = get_logger(__name__)


class ExecutionState(str, Enum):
    IDLE = "IDLE"
    SIMULATED = "SIMULATED"
    PARAMS_COMPUTED = "PARAMS_COMPUTED"
    TX_BUILT = "TX_BUILT"
    PRECHECK_SIMULATED = "PRECHECK_SIMULATED"
    SUBMITTED = "SUBMITTED"
    RESOLVED = "RESOLVED"
    ABORTED = "ABORTED"


class ExecutionOutcome(str, Enum):
    NOT_PROFITABLE = "NOT_PROFITABLE"
    MARGIN_TOO_THIN = "MARGIN_TOO_THIN"
    BUILD_FAILED = "BUILD_FAILED"
    PRECHECK_ERROR = "PRECHECK_ERROR"
    PRECHECK_REVERTED = "PRECHECK_REVERTED"
    SUBMISSION_ERROR = "SUBMISSION_ERROR"
    INCLUDED_SUCCESS = "INCLUDED_SUCCESS"
    INCLUDED_FAILED = "INCLUDED_FAILED"
    NOT_INCLUDED = "NOT_INCLUDED"
    NONCE_CONFLICT = "NONCE_CONFLICT"

    @property
    def is_retryable(self) -> bool:
        return self not in (
            ExecutionOutcome.INCLUDED_SUCCESS,
            ExecutionOutcome.INCLUDED_FAILED,
        )

    @property
    def spent_gas(self) -> bool:
        return self in (
            ExecutionOutcome.INCLUDED_SUCCESS,
            ExecutionOutcome.INCLUDED_FAILED,
        )

    @property
    def severity(self) -> int:
        return _OUTCOME_SEVERITY[self]


_OUTCOME_SEVERITY = {
    ExecutionOutcome.NOT_PROFITABLE: logging.INFO,
    ExecutionOutcome.MARGIN_TOO_THIN: logging.WARNING,
    ExecutionOutcome.BUILD_FAILED: logging.ERROR,
    ExecutionOutcome.PRECHECK_ERROR: logging.ERROR,
    ExecutionOutcome.PRECHECK_REVERTED: logging.WARNING,
    ExecutionOutcome.SUBMISSION_ERROR: logging.ERROR,
    ExecutionOutcome.INCLUDED_SUCCESS: logging.INFO,
    ExecutionOutcome.INCLUDED_FAILED: logging.CRITICAL,
    ExecutionOutcome.NOT_INCLUDED: logging.WARNING,
    ExecutionOutcome.NONCE_CONFLICT: logging.WARNING,
}

# Minimum-output parameter names per entry point, in hop order
MIN_OUTPUT_FIELDS = {
    ArbitrageScenario.RICH: ("minCrvUsdOut", "minVusdOut", "minUsdcOut"),
    ArbitrageScenario.CHEAP: ("minVusdOut", "minCrvUsdOut", "minUsdcOut"),
}


@dataclass
class ExecutionAttempt:
    """
    One pass through the pipeline for one simulation.

    Created per call to :meth:`ExecutionPipeline.execute` and never reused.
    """

    scenario: ArbitrageScenario
    simulation: ProfitSimulation
    flashloan_amount_raw: int
    state: ExecutionState = ExecutionState.IDLE
    history: List[ExecutionState] = field(default_factory=lambda: [ExecutionState.IDLE])
    min_outputs: Optional[Tuple[int, ...]] = None
    prepared: Optional[PreparedTransaction] = None
    target_block: Optional[int] = None
    precheck: Optional[PrecheckResult] = None
    resolution: Optional[Resolution] = None
    outcome: Optional[ExecutionOutcome] = None
    error: Optional[str] = None
    started_at: float = field(default_factory=time.time)
    finished_at: Optional[float] = None

    def transition(self, state: ExecutionState) -> None:
        self.state = state
        self.history.append(state)

    def finish(self, outcome: ExecutionOutcome, error: Optional[str] = None) -> "ExecutionAttempt":
        if self.state != ExecutionState.RESOLVED:
            self.transition(ExecutionState.ABORTED)
        self.outcome = outcome
        self.error = error
        self.finished_at = time.time()
        return self

    @property
    def tx_hash(self) -> Optional[str]:
        return self.prepared.tx_hash if self.prepared else None

    @property
    def duration_ms(self) -> Optional[float]:
        if self.finished_at is None:
            return None
        return (self.finished_at - self.started_at) * 1000

    def to_log_dict(self) -> Dict[str, Any]:
        return {
            "scenario": self.scenario.value,
            "flashloan_amount": str(self.simulation.flashloan_amount),
            "expected_net_profit": f"{self.simulation.net_profit:.6f}",
            "state": self.state.value,
            "outcome": self.outcome.value if self.outcome else None,
            "tx_hash": self.tx_hash,
            "gas_used": self.resolution.gas_used if self.resolution else None,
            "min_outputs": list(self.min_outputs) if self.min_outputs else None,
            "error": self.error,
            "duration": format_duration(self.duration_ms / 1000) if self.finished_at else None,
        }


class ExecutionPipeline:
    """
    Turns a profitable simulation into a submitted, monitored transaction.

    Args:
        config: Bot configuration (gas, slippage and contract settings)
        web3: Connected Web3 instance
        account: Transaction signer
        relay: Relay used for the precheck and the submission

    Raises:
        MissingAddressError: No arbitrage contract configured
    """

    def __init__(
        self,
        config: BotConfig,
        web3: Web3,
        account: LocalAccount,
        relay: BaseRelay,
    ):
        if not config.contracts.arbitrage_contract:
            raise MissingAddressError(
                "contracts.arbitrage_contract is required for execution",
                field="contracts.arbitrage_contract",
            )
        self.config = config
        self.web3 = web3
        self.account = account
        self.relay = relay
        self.contract = web3.eth.contract(
            address=Web3.to_checksum_address(config.contracts.arbitrage_contract),
            abi=ARBITRAGE_EXECUTOR_ABI,
        )
        self._lock = asyncio.Lock()

        self.attempts = 0
        self.outcome_counts: Dict[ExecutionOutcome, int] = {o: 0 for o in ExecutionOutcome}
        self.expected_profit_captured = Decimal(0)

        logger.info(
            f"Execution pipeline ready: signer {account.address}, relay {relay.name}, "
            f"contract {config.contracts.arbitrage_contract}"
        )

    def compute_min_outputs(self, simulation: ProfitSimulation) -> Tuple[int, ...]:
        """
        Slippage-adjusted minimum output for every hop, in hop order.

        Raises:
            ExecutionError: The final minimum does not cover the repayment
        """
        hops = simulation.hop_steps
        expected_fields = MIN_OUTPUT_FIELDS[simulation.scenario]
        if len(hops) != len(expected_fields):
            raise ExecutionError(
                f"Expected {len(expected_fields)} hops, simulation has {len(hops)}",
                stage=ExecutionState.PARAMS_COMPUTED.value,
            )

        min_outputs = tuple(
            apply_bps_haircut(step.amount_out_raw, self.config.slippage_bps) for step in hops
        )
        repayment = simulation.total_borrowed_raw
        if min_outputs[-1] <= repayment:
            decimals = simulation.base_token.decimals
            raise ExecutionError(
                f"Minimum final output {from_raw(min_outputs[-1], decimals)} does not "
                f"exceed repayment {from_raw(repayment, decimals)} after "
                f"{bps_to_percent(self.config.slippage_bps)}% slippage",
                stage=ExecutionState.PARAMS_COMPUTED.value,
            )
        return min_outputs

    async def build_transaction(self, attempt: ExecutionAttempt) -> PreparedTransaction:
        """Encode, price and sign the entry-point call for ``attempt``."""
        loop = asyncio.get_event_loop()
        sender = self.account.address

        block, nonce = await asyncio.gather(
            loop.run_in_executor(None, self.web3.eth.get_block, "latest"),
            loop.run_in_executor(
                None, self.web3.eth.get_transaction_count, sender, "pending"
            ),
        )
        base_fee = block["baseFeePerGas"]
        priority_fee = Web3.to_wei(self.config.max_priority_fee_gwei, "gwei")
        max_fee = base_fee + Web3.to_wei(self.config.base_fee_buffer_gwei, "gwei")

        entry_point = getattr(self.contract.functions, ENTRY_POINTS[attempt.scenario.value])
        call = entry_point(attempt.flashloan_amount_raw, attempt.min_outputs)
        tx = call.build_transaction(
            {
                "from": sender,
                "nonce": nonce,
                "gas": self.config.gas_limit,
                "maxFeePerGas": max_fee,
                "maxPriorityFeePerGas": priority_fee,
                "chainId": self.config.chain_id,
            }
        )
        signed = self.account.sign_transaction(tx)

        return PreparedTransaction(
            tx=dict(tx),
            raw=bytes(signed.raw_transaction),
            tx_hash=Web3.to_hex(signed.hash),
            sender=sender,
            nonce=nonce,
            block_number=block["number"],
        )

    async def execute(self, simulation: ProfitSimulation) -> ExecutionAttempt:
        """
        Run one attempt to completion.

        Returns:
            The finished attempt; ``attempt.outcome`` tells what happened
        """
        attempt = ExecutionAttempt(
            scenario=simulation.scenario,
            simulation=simulation,
            flashloan_amount_raw=simulation.flashloan_amount_raw,
        )

        async with self._lock:
            self.attempts += 1
            logger.info(f"EXECUTION_START: {json.dumps(attempt.to_log_dict())}")
            try:
                await self._run(attempt)
            except Exception as e:
                logger.exception(f"Unexpected error in {attempt.state.value}: {e}")
                if attempt.state in (
                    ExecutionState.PRECHECK_SIMULATED,
                    ExecutionState.SUBMITTED,
                ):
                    attempt.finish(ExecutionOutcome.SUBMISSION_ERROR, str(e))
                else:
                    attempt.finish(ExecutionOutcome.BUILD_FAILED, str(e))

            self._record(attempt)
        return attempt

    async def _run(self, attempt: ExecutionAttempt) -> ExecutionAttempt:
        simulation = attempt.simulation
        attempt.transition(ExecutionState.SIMULATED)
        if not simulation.is_profitable:
            return attempt.finish(
                ExecutionOutcome.NOT_PROFITABLE,
                f"Net profit ${simulation.net_profit:.2f} below minimum "
                f"${self.config.min_profit_usd}",
            )

        try:
            attempt.min_outputs = self.compute_min_outputs(simulation)
        except ExecutionError as e:
            return attempt.finish(ExecutionOutcome.MARGIN_TOO_THIN, str(e))
        attempt.transition(ExecutionState.PARAMS_COMPUTED)

        try:
            attempt.prepared = await self.build_transaction(attempt)
        except Exception as e:
            return attempt.finish(ExecutionOutcome.BUILD_FAILED, f"Build failed: {e}")
        attempt.transition(ExecutionState.TX_BUILT)
        attempt.target_block = attempt.prepared.block_number + 1

        try:
            attempt.precheck = await self.relay.simulate(attempt.prepared, attempt.target_block)
        except Exception as e:
            attempt.precheck = PrecheckResult(PrecheckStatus.ERROR, reason=str(e))

        if attempt.precheck.status == PrecheckStatus.ERROR:
            return attempt.finish(
                ExecutionOutcome.PRECHECK_ERROR, f"Precheck error: {attempt.precheck.reason}"
            )
        if attempt.precheck.status == PrecheckStatus.REVERTED:
            return attempt.finish(
                ExecutionOutcome.PRECHECK_REVERTED,
                f"Precheck reverted: {attempt.precheck.reason}",
            )
        attempt.transition(ExecutionState.PRECHECK_SIMULATED)

        try:
            handle = await self.relay.submit(attempt.prepared, attempt.target_block)
        except Exception as e:
            if is_nonce_error(str(e)):
                return attempt.finish(ExecutionOutcome.NONCE_CONFLICT, str(e))
            return attempt.finish(ExecutionOutcome.SUBMISSION_ERROR, f"Submission failed: {e}")
        attempt.transition(ExecutionState.SUBMITTED)

        attempt.resolution = await handle.wait()
        attempt.transition(ExecutionState.RESOLVED)
        return attempt.finish(*self._classify_resolution(attempt.resolution))

    @staticmethod
    def _classify_resolution(resolution: Resolution) -> Tuple[ExecutionOutcome, Optional[str]]:
        if resolution.status == InclusionStatus.NOT_INCLUDED:
            return ExecutionOutcome.NOT_INCLUDED, resolution.reason
        if resolution.status == InclusionStatus.NONCE_CONFLICT:
            return ExecutionOutcome.NONCE_CONFLICT, resolution.reason
        if resolution.succeeded_on_chain:
            return ExecutionOutcome.INCLUDED_SUCCESS, None
        return (
            ExecutionOutcome.INCLUDED_FAILED,
            "Transaction mined but failed on-chain despite a successful precheck",
        )

    def _record(self, attempt: ExecutionAttempt) -> None:
        outcome = attempt.outcome
        self.outcome_counts[outcome] += 1
        if outcome == ExecutionOutcome.INCLUDED_SUCCESS:
            self.expected_profit_captured += attempt.simulation.net_profit

        logger.log(outcome.severity, f"EXECUTION_RESULT: {json.dumps(attempt.to_log_dict())}")
        if outcome == ExecutionOutcome.INCLUDED_FAILED:
            logger.critical(
                f"Transaction {attempt.tx_hash} was INCLUDED but FAILED on-chain. "
                "Precheck and live state diverged; investigate before the next attempt."
            )

    def get_stats(self) -> Dict[str, Any]:
        """Per-run execution statistics."""
        included = (
            self.outcome_counts[ExecutionOutcome.INCLUDED_SUCCESS]
            + self.outcome_counts[ExecutionOutcome.INCLUDED_FAILED]
        )
        return {
            "attempts": self.attempts,
            "included": included,
            "successful": self.outcome_counts[ExecutionOutcome.INCLUDED_SUCCESS],
            "outcomes": {
                outcome.value: count
                for outcome, count in self.outcome_counts.items()
                if count
            },
            "expected_profit_captured": str(self.expected_profit_captured),
        }
