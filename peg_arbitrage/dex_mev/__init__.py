"""
On-chain side of the peg arbitrage bot: pool quotes, oracle readings, issuer
and flashloan fees, path simulation and MEV-protected execution.
"""

from .executor import ExecutionAttempt, ExecutionOutcome, ExecutionPipeline, ExecutionState
from .flashloan_pool import FlashloanPoolReader
from .issuer import IssuerFeeReader
from .price_oracle import OraclePriceFetcher
from .quote_provider import QuoteResult, StableSwapQuoteProvider
from .relay import FlashbotsRelay, PublicMempoolRelay
from .simulator import ProfitSimulator

__all__ = [
    "StableSwapQuoteProvider",
    "QuoteResult",
    "OraclePriceFetcher",
    "IssuerFeeReader",
    "FlashloanPoolReader",
    "ProfitSimulator",
    "ExecutionPipeline",
    "ExecutionAttempt",
    "ExecutionOutcome",
    "ExecutionState",
    "FlashbotsRelay",
    "PublicMempoolRelay",
]
