"""x402 payment constants."""

# USDC contract addresses per network (CAIP-2 format: eip155:chainId)
USDC_ETH = "0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48"
USDC_OPTIMISM = "0x0b2C639c533813f4Aa9D7837CAf62653d097Ff85"
USDC_POLYGON = "0x3c499c542cEF5E3811e1192ce70d8cC03d5c3359"
USDC_BASE = "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913"
USDC_ARBITRUM = "0xaf88d065e77c8cC2239327C5EDb3A432268e5831"

NETWORK_USDC = {
    "eip155:1": USDC_ETH,
    "eip155:10": USDC_OPTIMISM,
    "eip155:137": USDC_POLYGON,
    "eip155:8453": USDC_BASE,
    "eip155:42161": USDC_ARBITRUM,
}

# Base mainnet
DEFAULT_NETWORK = "eip155:8453"

# 10 USDC in base units (6 decimals)
DEFAULT_MAX_AMOUNT = "10000000"

DEFAULT_TIMEOUT_SECONDS = 300

DEFAULT_DESCRIPTION = "AI agent service payment"

PAYMENT_SCHEME = "exact"

X402_VERSION = 2

# Header names
PAYMENT_REQUIRED_HEADER = "X-PAYMENT-REQUIRED"
PAYMENT_HEADER = "X-PAYMENT"
PAYMENT_RESPONSE_HEADER = "X-PAYMENT-RESPONSE"

# Token info for the EIP-712 domain, keyed by chain id then lowercase asset
TOKEN_INFO = {
    1: {USDC_ETH.lower(): {"name": "USD Coin", "version": "2", "decimals": 6}},
    10: {USDC_OPTIMISM.lower(): {"name": "USD Coin", "version": "2", "decimals": 6}},
    137: {USDC_POLYGON.lower(): {"name": "USD Coin", "version": "2", "decimals": 6}},
    8453: {USDC_BASE.lower(): {"name": "USD Coin", "version": "2", "decimals": 6}},
    42161: {USDC_ARBITRUM.lower(): {"name": "USD Coin", "version": "2", "decimals": 6}},
}

DEFAULT_TOKEN_INFO = {"name": "USDC", "version": "2", "decimals": 6}

# Public RPC per network, used for balance lookups
NETWORK_RPC = {
    "eip155:1": "https://eth.llamarpc.com",
    "eip155:10": "https://mainnet.optimism.io",
    "eip155:137": "https://polygon-rpc.com",
    "eip155:8453": "https://mainnet.base.org",
    "eip155:42161": "https://arb1.arbitrum.io/rpc",
}

# Read-only slice of the ERC-20 interface
ERC20_ABI = [
    {
        "name": "balanceOf",
        "type": "function",
        "stateMutability": "view",
        "inputs": [{"name": "account", "type": "address"}],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "name": "decimals",
        "type": "function",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "uint8"}],
    },
    {
        "name": "symbol",
        "type": "function",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "string"}],
    },
]
