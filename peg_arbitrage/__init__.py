"""
Peg Arbitrage Bot.

Detects when an intermediary stablecoin trades off-peg against an
oracle-priced synthetic, simulates the flashloan round trip through the
issuer and two StableSwap pools, and submits the profitable direction as a
single atomic transaction.
"""

from peg_arbitrage.version import __version__

PROJECT_NAME = "peg-arbitrage"
VERSION = __version__

from peg_arbitrage.amounts import TokenAmount, from_raw, to_raw  # noqa: E402
from peg_arbitrage.config_loader import load_config  # noqa: E402
from peg_arbitrage.config_schema import BotConfig  # noqa: E402
from peg_arbitrage.exceptions import PegArbitrageError  # noqa: E402
from peg_arbitrage.monitor import OpportunityMonitor  # noqa: E402
from peg_arbitrage.types import (  # noqa: E402
    ArbitrageOpportunity,
    ArbitrageScenario,
    ProfitSimulation,
    SimulationStep,
)

__all__ = [
    "PROJECT_NAME",
    "VERSION",
    "TokenAmount",
    "to_raw",
    "from_raw",
    "load_config",
    "BotConfig",
    "PegArbitrageError",
    "OpportunityMonitor",
    "ArbitrageOpportunity",
    "ArbitrageScenario",
    "ProfitSimulation",
    "SimulationStep",
]
