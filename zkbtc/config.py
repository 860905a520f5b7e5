# Copyright (c) 2025 The zkBitcoin developers
# Distributed under the MIT software license

"""
zkBitcoin - Runtime configuration

Settings come from the environment (optionally seeded from a .env file,
chmod 600 recommended since it may hold RPC credentials) and can be
overridden by CLI flags.

  ZKBTC_RPC_ADDRESS   bitcoind URL
  ZKBTC_RPC_WALLET    bitcoind wallet name
  ZKBTC_RPC_AUTH      "user:password"
  ZKBTC_NETWORK       mainnet | testnet | signet | regtest
  ZKBTC_PUBKEY        zkBitcoin deposit key (hex)
  ZKBTC_FEE_PUBKEY    zkBitcoin fee key (hex)
  ZKBTC_LOG_LEVEL     DEBUG | INFO | WARNING | ERROR
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional, Union

from .constants import (
    BITCOIN_JSON_RPC_VERSION,
    DEFAULT_NETWORK,
    ZKBITCOIN_FEE_PUBKEY,
    ZKBITCOIN_PUBKEY,
)
from .json_rpc import RpcContext

log = logging.getLogger(__name__)


def load_env_file(path: Union[str, Path]) -> int:
    """
    Copy KEY=VALUE lines of a .env file into os.environ without overriding
    variables that are already set.

    Returns:
        number of lines read
    """
    path = Path(path)
    if not path.exists():
        return 0
    log.info(f"Loading config from {path}")
    count = 0
    with open(path) as f:
        for line in f:
            line = line.strip()
            if line and not line.startswith("#") and "=" in line:
                key, value = line.split("=", 1)
                os.environ.setdefault(key.strip(), value.strip().strip('"').strip("'"))
                count += 1
    return count


@dataclass(frozen=True)
class Config:
    rpc_address: Optional[str] = None
    rpc_wallet: Optional[str] = None
    rpc_auth: Optional[str] = None
    rpc_version: Optional[str] = BITCOIN_JSON_RPC_VERSION
    network: str = DEFAULT_NETWORK
    pubkey: str = ZKBITCOIN_PUBKEY
    fee_pubkey: str = ZKBITCOIN_FEE_PUBKEY
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Config":
        env = os.environ if environ is None else environ
        return cls(
            rpc_address=env.get("ZKBTC_RPC_ADDRESS") or None,
            rpc_wallet=env.get("ZKBTC_RPC_WALLET") or None,
            rpc_auth=env.get("ZKBTC_RPC_AUTH") or None,
            network=env.get("ZKBTC_NETWORK", DEFAULT_NETWORK),
            pubkey=env.get("ZKBTC_PUBKEY", ZKBITCOIN_PUBKEY),
            fee_pubkey=env.get("ZKBTC_FEE_PUBKEY", ZKBITCOIN_FEE_PUBKEY),
            log_level=env.get("ZKBTC_LOG_LEVEL", "INFO").upper(),
        )

    def rpc_context(self) -> RpcContext:
        return RpcContext(
            version=self.rpc_version,
            wallet=self.rpc_wallet,
            address=self.rpc_address,
            auth=self.rpc_auth,
        )
