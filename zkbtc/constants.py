# Copyright (c) 2025 The zkBitcoin developers
# Distributed under the MIT software license

"""
zkBitcoin - Constants

Protocol-wide values shared by the RPC client, the ceremony and the services.
"""

# =============================================================================
# BITCOIND JSON-RPC
# =============================================================================

# bitcoind only speaks JSON-RPC 1.0
BITCOIN_JSON_RPC_VERSION = "1.0"

# Seconds before an RPC request is abandoned
JSON_RPC_TIMEOUT = 2

# Used when no RPC address is configured
DEFAULT_RPC_ADDRESS = "http://127.0.0.1:18331"

# Development node (see RpcContext.for_testing)
JSON_RPC_ENDPOINT = "http://146.190.33.39:18331"
JSON_RPC_AUTH = "root:hellohello"
JSON_RPC_TEST_WALLET = "mywallet"

EXPLORER_TX_URL = "https://blockstream.info/testnet/tx/"

# =============================================================================
# KEYS
# =============================================================================

# x-only keys of the zkBitcoin deposit and fee addresses
ZKBITCOIN_PUBKEY = "dff1d77f2a671c5f36183726db2341be58feae1da2deced843240f7b502ba659"
ZKBITCOIN_FEE_PUBKEY = "dd308afec5777e13121fa72b9cc1b7cc0139715309b086c960e18fd969774eb8"

# Leading byte of a compressed secp256k1 point with even y
EVEN_Y_PREFIX = 0x02

# Bech32 human-readable part per network
NETWORK_HRP = {
    "mainnet": "bc",
    "testnet": "tb",
    "signet": "tb",
    "regtest": "bcrt",
}
DEFAULT_NETWORK = "testnet"

# =============================================================================
# COMMITTEE
# =============================================================================

# Placeholder member endpoints: member i listens on PLACEHOLDER_BASE_PORT + i
PLACEHOLDER_HOST = "http://127.0.0.1"
PLACEHOLDER_BASE_PORT = 8890

DEFAULT_NODE_ADDRESS = "127.0.0.1:8890"
DEFAULT_ORCHESTRATOR_ADDRESS = "127.0.0.1:8888"

KEY_FILE_TEMPLATE = "key-{ordinal}.json"
PUBKEY_PACKAGE_FILE = "publickey-package.json"
COMMITTEE_CFG_FILE = "committee-cfg.json"

# Give up on the even-y rejection sampling after this many fresh keygens
MAX_KEYGEN_ATTEMPTS = 256

# Round-1 nonces a node keeps for round 2: seconds, and sessions at most
NONCE_TTL_S = 60
MAX_PENDING_SESSIONS = 1024
