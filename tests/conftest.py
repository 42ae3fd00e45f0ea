"""
Shared fixtures: an in-memory chain that answers the handful of contract
calls the bot makes, and a validated bot configuration pointing at it.
"""

import time
from datetime import datetime
from decimal import Decimal

import pytest
from web3.exceptions import ContractLogicError, TransactionNotFound

from peg_arbitrage.amounts import from_raw, to_raw
from peg_arbitrage.config_loader import build_config
from peg_arbitrage.types import (
    ArbitrageScenario,
    GasCost,
    OracleImpact,
    ProfitSimulation,
    SimulationStep,
    StepKind,
    Token,
)

USDC = "0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48"
CRVUSD = "0xf939E0A03FB07F59A73314E73794Be0E57ac1b4E"
VUSD = "0x677ddbd918637E5F2c79e164D402454dE7dA8619"
BASE_POOL = "0x4DEcE678ceceb27446b35C672dC7d61F30bAD69E"
SYNTH_POOL = "0xB1c189dfDe178FE9F90E72727837cC9289fB944F"
MINTER = "0x3C8aeF08d90C2418f8AE887af47ba7d8Db88AF6b"
REDEEMER = "0x43c704BC0F773B529E871EAAF4E283C2233512F9"
FLASHLOAN_POOL = "0x5777d92f208679DB4b9778590Fa3CAB3aC9e2168"
BASE_ORACLE = "0x8fFfFfd4AfB6115b954Bd326cbe7B4BA576818f6"
NATIVE_ORACLE = "0x5f4ec3df9cbd43714fe2740f5e3616155c5b8419"
EXECUTOR = "0xcD04f54022822b6f7099308B4b9Ab96D1f1c05F5"

# Well-known development key, never funded on mainnet
TEST_PRIVATE_KEY = "0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80"

GWEI = 10**9


class _Call:
    def __init__(self, handler, args):
        self._handler = handler
        self._args = args

    def call(self):
        return self._handler(*self._args)


class _Functions:
    def __init__(self, handlers):
        self._handlers = handlers

    def __getattr__(self, name):
        try:
            handler = self._handlers[name]
        except KeyError:
            raise AttributeError(name)
        return lambda *args: _Call(handler, args)


class FakeContract:
    def __init__(self, address, handlers):
        self.address = address
        self.functions = _Functions(handlers)


class FakePool:
    """
    Two-coin pool quoting at a fixed rate.

    ``price`` is coin1 received per coin0, in token units.
    """

    def __init__(self, coins, decimals, price):
        self.coins = list(coins)
        self.decimals = list(decimals)
        self.price = Decimal(price)
        self.revert = False
        self.zero = False
        self.calls = 0

    def get_dy(self, i, j, dx):
        self.calls += 1
        if self.revert:
            raise ContractLogicError("execution reverted")
        if self.zero:
            return 0
        amount = from_raw(dx, self.decimals[i])
        out = amount * self.price if i == 0 else amount / self.price
        return to_raw(out, self.decimals[j], strict=False)

    def handlers(self):
        return {
            "coins": lambda i: self.coins[i],
            "get_dy": self.get_dy,
        }


class FakeOracle:
    """Chainlink aggregator with 8 decimals."""

    def __init__(self, price, description="USDC / USD", updated_at=None):
        self.answer = to_raw(Decimal(price), 8)
        self.description = description
        self.updated_at = updated_at if updated_at is not None else int(time.time())
        self.fail = False
        self.metadata_reads = 0
        self.round_reads = 0

    def set_price(self, price):
        self.answer = to_raw(Decimal(price), 8)

    def _decimals(self):
        self.metadata_reads += 1
        return 8

    def _round(self):
        self.round_reads += 1
        if self.fail:
            raise ConnectionError("rpc unavailable")
        return (110, self.answer, self.updated_at, self.updated_at, 110)

    def handlers(self):
        return {
            "decimals": self._decimals,
            "description": lambda: self.description,
            "latestRoundData": self._round,
        }


class FakeEth:
    def __init__(self):
        self.contracts = {}
        self.gas_price = 10 * GWEI
        self.block_number = 100
        self.base_fee = 10 * GWEI
        self.nonces = {"pending": 0, "latest": 0}
        self.receipts = {}
        self.sent = []
        self.calls = []
        self.call_error = None

    def register(self, address, handlers):
        self.contracts[address.lower()] = handlers

    def contract(self, address=None, abi=None):
        return FakeContract(address, self.contracts.get(address.lower(), {}))

    def get_code(self, address):
        return b"\x60\x80" if address.lower() in self.contracts else b""

    def get_block(self, identifier):
        return {"number": self.block_number, "baseFeePerGas": self.base_fee}

    def get_transaction_count(self, address, block_identifier="latest"):
        return self.nonces[block_identifier]

    def get_transaction_receipt(self, tx_hash):
        if tx_hash not in self.receipts:
            raise TransactionNotFound(f"Transaction {tx_hash} not found")
        return self.receipts[tx_hash]

    def call(self, transaction, block_identifier="latest"):
        self.calls.append(transaction)
        if self.call_error is not None:
            raise self.call_error
        return b""

    def send_raw_transaction(self, raw):
        self.sent.append(raw)
        return b"\x00" * 32


class FakeWeb3:
    def __init__(self):
        self.eth = FakeEth()


class FakeChain:
    """Pools, oracles, issuer and flashloan contracts wired into one FakeWeb3."""

    def __init__(self):
        self.web3 = FakeWeb3()
        self.base_pool = FakePool([USDC, CRVUSD], [6, 18], "1")
        self.synth_pool = FakePool([CRVUSD, VUSD], [18, 18], "1")
        self.base_oracle = FakeOracle("1")
        self.native_oracle = FakeOracle("2000", description="ETH / USD")
        self.mint_fee_bps = 0
        self.redeem_fee_bps = 30
        # Uniswap V3 fee() in hundredths of a bp; 100 is the 1 bp tier
        self.flashloan_fee_pips = 100
        self.flashloan_liquidity_raw = to_raw(Decimal("5000000"), 6)

        eth = self.web3.eth
        eth.register(BASE_POOL, self.base_pool.handlers())
        eth.register(SYNTH_POOL, self.synth_pool.handlers())
        eth.register(BASE_ORACLE, self.base_oracle.handlers())
        eth.register(NATIVE_ORACLE, self.native_oracle.handlers())
        eth.register(MINTER, {"mintingFee": lambda: self.mint_fee_bps})
        eth.register(REDEEMER, {"redeemFee": lambda: self.redeem_fee_bps})
        eth.register(FLASHLOAN_POOL, {"fee": lambda: self.flashloan_fee_pips})
        eth.register(USDC, {"balanceOf": self._usdc_balance})

    def _usdc_balance(self, account):
        return self.flashloan_liquidity_raw if account.lower() == FLASHLOAN_POOL.lower() else 0


def make_config_dict(**overrides):
    config = {
        "rpc_url": "http://localhost:8545",
        "chain_id": 1,
        "relay_mode": "public",
        "tokens": {
            "USDC": {"address": USDC, "decimals": 6},
            "crvUSD": {"address": CRVUSD, "decimals": 18},
            "VUSD": {"address": VUSD, "decimals": 18},
        },
        "base_token": "USDC",
        "intermediary_token": "crvUSD",
        "synth_token": "VUSD",
        "base_pool": {"address": BASE_POOL, "coins": ["USDC", "crvUSD"]},
        "synth_pool": {"address": SYNTH_POOL, "coins": ["crvUSD", "VUSD"]},
        "contracts": {
            "arbitrage_contract": EXECUTOR,
            "minter": MINTER,
            "redeemer": REDEEMER,
            "flashloan_pool": FLASHLOAN_POOL,
            "base_oracle": BASE_ORACLE,
        },
        "flashloan_amounts": ["1000"],
        "native_price_usd": "2000",
    }
    config.update(overrides)
    return config


@pytest.fixture
def config_dict():
    return make_config_dict()


@pytest.fixture
def bot_config(config_dict):
    return build_config(config_dict)


@pytest.fixture
def chain():
    return FakeChain()


@pytest.fixture
def tokens():
    return {
        "USDC": Token("USDC", USDC, 6),
        "crvUSD": Token("crvUSD", CRVUSD, 18),
        "VUSD": Token("VUSD", VUSD, 18),
    }


@pytest.fixture
def make_simulation(tokens):
    """
    Factory for ProfitSimulation objects with chosen hop outputs.

    ``hop_outputs`` are the raw outputs of the three hops in order; the last
    one is in base-token precision.
    """

    def _make(
        scenario=ArbitrageScenario.RICH,
        hop_outputs=(1000 * 10**18, 1020 * 10**18, 1_016_940_000),
        flashloan_amount_raw=1_000_000_000,
        flashloan_fee_raw=100_000,
        net_profit=Decimal("10.84"),
        is_profitable=True,
    ):
        usdc, crvusd, vusd = tokens["USDC"], tokens["crvUSD"], tokens["VUSD"]
        if scenario == ArbitrageScenario.RICH:
            path = [
                (StepKind.SWAP, usdc, crvusd),
                (StepKind.SWAP, crvusd, vusd),
                (StepKind.REDEEM, vusd, usdc),
            ]
        else:
            path = [
                (StepKind.MINT, usdc, vusd),
                (StepKind.SWAP, vusd, crvusd),
                (StepKind.SWAP, crvusd, usdc),
            ]

        steps = [
            SimulationStep(1, StepKind.FLASHLOAN, "Flashloan USDC", usdc, 0, usdc,
                           flashloan_amount_raw, FLASHLOAN_POOL)
        ]
        amount_in = flashloan_amount_raw
        for kind, token_in, token_out in path:
            amount_out = hop_outputs[len(steps) - 1]
            steps.append(
                SimulationStep(len(steps) + 1, kind, f"{kind.value}", token_in, amount_in,
                               token_out, amount_out, "venue")
            )
            amount_in = amount_out
        total_borrowed = flashloan_amount_raw + flashloan_fee_raw
        steps.append(
            SimulationStep(len(steps) + 1, StepKind.REPAY, "Repay", usdc, total_borrowed,
                           usdc, 0, FLASHLOAN_POOL)
        )

        return ProfitSimulation(
            scenario=scenario,
            timestamp=datetime.now(),
            base_token=usdc,
            reference_price=Decimal("1.02"),
            price_deviation_percent=Decimal("2"),
            flashloan_amount_raw=flashloan_amount_raw,
            flashloan_fee_bps=Decimal("1"),
            flashloan_fee_raw=flashloan_fee_raw,
            steps=tuple(steps),
            oracle_impact=OracleImpact(
                oracle_price=Decimal("1"),
                deviation_from_peg_percent=Decimal("0"),
                impact_on_mint_percent=Decimal("0"),
                impact_on_redeem_percent=Decimal("0"),
                within_tolerance=True,
                would_revert=False,
            ),
            total_borrowed_raw=total_borrowed,
            total_recovered_raw=hop_outputs[-1],
            gross_profit=net_profit + Decimal(6),
            gas_cost=GasCost(300000, 10 * GWEI, Decimal("0.003"), Decimal("6"), Decimal("2000")),
            net_profit=net_profit,
            profit_percent=net_profit / Decimal(10),
            is_profitable=is_profitable,
            recommendation="EXECUTE" if is_profitable else "DO NOT EXECUTE",
            warnings=(),
        )

    return _make
