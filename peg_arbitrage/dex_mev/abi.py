"""
Minimal contract ABIs used by the quote provider, oracle fetcher, issuer fee
reader, flashloan pool reader and execution pipeline.
"""

# Curve StableSwap NG pool
STABLESWAP_POOL_ABI = [
    {
        "stateMutability": "view",
        "type": "function",
        "name": "coins",
        "inputs": [{"name": "arg0", "type": "uint256"}],
        "outputs": [{"name": "", "type": "address"}],
    },
    {
        "stateMutability": "view",
        "type": "function",
        "name": "get_dy",
        "inputs": [
            {"name": "i", "type": "int128"},
            {"name": "j", "type": "int128"},
            {"name": "dx", "type": "uint256"},
        ],
        "outputs": [{"name": "", "type": "uint256"}],
    },
]

# Chainlink AggregatorV3Interface
AGGREGATOR_V3_ABI = [
    {
        "inputs": [],
        "name": "decimals",
        "outputs": [{"name": "", "type": "uint8"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [],
        "name": "description",
        "outputs": [{"name": "", "type": "string"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [],
        "name": "latestRoundData",
        "outputs": [
            {"name": "roundId", "type": "uint80"},
            {"name": "answer", "type": "int256"},
            {"name": "startedAt", "type": "uint256"},
            {"name": "updatedAt", "type": "uint256"},
            {"name": "answeredInRound", "type": "uint80"},
        ],
        "stateMutability": "view",
        "type": "function",
    },
]

# Issuer minter / redeemer fee getters (basis points)
MINTER_ABI = [
    {
        "inputs": [],
        "name": "mintingFee",
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
]

REDEEMER_ABI = [
    {
        "inputs": [],
        "name": "redeemFee",
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
]

# Uniswap V3 pool used as the flashloan venue; fee() is in hundredths of a bp
UNISWAP_V3_POOL_ABI = [
    {
        "inputs": [],
        "name": "fee",
        "outputs": [{"name": "", "type": "uint24"}],
        "stateMutability": "view",
        "type": "function",
    },
]

ERC20_ABI = [
    {
        "inputs": [{"name": "account", "type": "address"}],
        "name": "balanceOf",
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
]

_RICH_PARAMS = [
    {"name": "minCrvUsdOut", "type": "uint256"},
    {"name": "minVusdOut", "type": "uint256"},
    {"name": "minUsdcOut", "type": "uint256"},
]

_CHEAP_PARAMS = [
    {"name": "minVusdOut", "type": "uint256"},
    {"name": "minCrvUsdOut", "type": "uint256"},
    {"name": "minUsdcOut", "type": "uint256"},
]

# Flashloan executor. Each entry point takes the loan amount and one minimum
# output per hop, in hop order, and reverts if any hop falls short.
ARBITRAGE_EXECUTOR_ABI = [
    {
        "inputs": [
            {"name": "_flashloanAmount", "type": "uint256"},
            {"name": "_params", "type": "tuple", "components": _RICH_PARAMS},
        ],
        "name": "executeRichWithDefaultPool",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "inputs": [
            {"name": "_flashloanAmount", "type": "uint256"},
            {"name": "_params", "type": "tuple", "components": _CHEAP_PARAMS},
        ],
        "name": "executeCheapWithDefaultPool",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
]

ENTRY_POINTS = {
    "RICH": "executeRichWithDefaultPool",
    "CHEAP": "executeCheapWithDefaultPool",
}
