"""ERC-8004 identity registry addresses, chains and ABI."""

# Deployed at the same vanity address on every supported chain
IDENTITY_REGISTRY_ADDRESS = "0x8004A169FB4a3325136EB29fA0ceB6D2e539a432"

# Returned by getAgentWallet when no payment wallet is set
ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

REGISTRATION_TYPE = "https://eips.ethereum.org/EIPS/eip-8004#registration-v1"

DEFAULT_NAMESPACE = "eip155"

# Well-known service kinds declared in registration records
MCP_SERVICE = "MCP"
A2A_SERVICE = "A2A"

# Chains where the registry is deployed, chain id -> (name, public RPC)
SUPPORTED_CHAINS: dict[int, dict[str, str]] = {
    1: {"name": "Ethereum", "rpc": "https://eth.llamarpc.com"},
    10: {"name": "Optimism", "rpc": "https://mainnet.optimism.io"},
    56: {"name": "BNB Chain", "rpc": "https://bsc-dataseed.binance.org"},
    100: {"name": "Gnosis", "rpc": "https://rpc.gnosischain.com"},
    137: {"name": "Polygon", "rpc": "https://polygon-rpc.com"},
    143: {"name": "Monad", "rpc": "https://rpc.monad.xyz"},
    1088: {"name": "Metis", "rpc": "https://andromeda.metis.io/?owner=1088"},
    2741: {"name": "Abstract", "rpc": "https://api.mainnet.abs.xyz"},
    5000: {"name": "Mantle", "rpc": "https://rpc.mantle.xyz"},
    8453: {"name": "Base", "rpc": "https://mainnet.base.org"},
    42161: {"name": "Arbitrum", "rpc": "https://arb1.arbitrum.io/rpc"},
    42220: {"name": "Celo", "rpc": "https://forno.celo.org"},
    43114: {"name": "Avalanche", "rpc": "https://api.avax.network/ext/bc/C/rpc"},
    59144: {"name": "Linea", "rpc": "https://rpc.linea.build"},
    167000: {"name": "Taiko", "rpc": "https://rpc.mainnet.taiko.xyz"},
    534352: {"name": "Scroll", "rpc": "https://rpc.scroll.io"},
}

IDENTITY_REGISTRY_ABI = [
    {
        "name": "register",
        "type": "function",
        "stateMutability": "nonpayable",
        "inputs": [{"name": "agentURI", "type": "string"}],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "name": "setAgentURI",
        "type": "function",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "agentId", "type": "uint256"},
            {"name": "newURI", "type": "string"},
        ],
        "outputs": [],
    },
    {
        "name": "balanceOf",
        "type": "function",
        "stateMutability": "view",
        "inputs": [{"name": "owner", "type": "address"}],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "name": "ownerOf",
        "type": "function",
        "stateMutability": "view",
        "inputs": [{"name": "tokenId", "type": "uint256"}],
        "outputs": [{"name": "", "type": "address"}],
    },
    {
        "name": "tokenURI",
        "type": "function",
        "stateMutability": "view",
        "inputs": [{"name": "tokenId", "type": "uint256"}],
        "outputs": [{"name": "", "type": "string"}],
    },
    {
        "name": "getAgentWallet",
        "type": "function",
        "stateMutability": "view",
        "inputs": [{"name": "agentId", "type": "uint256"}],
        "outputs": [{"name": "", "type": "address"}],
    },
    {
        "name": "getMetadata",
        "type": "function",
        "stateMutability": "view",
        "inputs": [
            {"name": "agentId", "type": "uint256"},
            {"name": "metadataKey", "type": "string"},
        ],
        "outputs": [{"name": "", "type": "bytes"}],
    },
    {
        "name": "setMetadata",
        "type": "function",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "agentId", "type": "uint256"},
            {"name": "metadataKey", "type": "string"},
            {"name": "metadataValue", "type": "bytes"},
        ],
        "outputs": [],
    },
    {
        "name": "Transfer",
        "type": "event",
        "anonymous": False,
        "inputs": [
            {"name": "from", "type": "address", "indexed": True},
            {"name": "to", "type": "address", "indexed": True},
            {"name": "tokenId", "type": "uint256", "indexed": True},
        ],
    },
]
