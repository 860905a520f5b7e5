"""
zkBitcoin

Threshold (FROST) custody of a taproot pool and the bitcoind pipeline that
moves its funds.

Architecture:
  - Key ceremony (committee.ceremony) deals the committee key once and
    writes one secret key file per member plus shared public artifacts
  - Committee nodes hold one share each; the orchestrator collects t of
    them into a BIP-340 signature
  - json_rpc funds, signs and broadcasts transactions through bitcoind,
    keeping bitcoind's error detail intact

Usage:
    from zkbtc import RpcContext, fund_raw_transaction, HexTransaction

    ctx = RpcContext(version="1.0", wallet="mywallet")
    hex_tx, tx = await fund_raw_transaction(ctx, HexTransaction(raw_hex))
"""

from .errors import (
    ZkBitcoinError,
    RpcTransportError,
    RpcError,
    RpcDecodeError,
    TransactionDecodeError,
    KeygenError,
    CeremonyError,
    SigningError,
    CommitteeConfigError,
    ArtifactError,
    AddressError,
)
from .transaction import (
    TransactionRef,
    HexTransaction,
    StructuredTransaction,
    serialize_hex,
    deserialize_hex,
)
from .json_rpc import (
    RpcContext,
    json_rpc_request,
    parse_rpc_response,
    fund_raw_transaction,
    sign_transaction,
    send_raw_transaction,
)
from .frost import KeyPackage, PublicKeyPackage, gen_frost_keys
from .committee import CommitteeConfig, Member
from .taproot import taproot_addr_from

__version__ = "0.1.0"
__all__ = [
    # Errors
    "ZkBitcoinError", "RpcTransportError", "RpcError", "RpcDecodeError",
    "TransactionDecodeError", "KeygenError", "CeremonyError", "SigningError",
    "CommitteeConfigError", "ArtifactError", "AddressError",
    # Transactions
    "TransactionRef", "HexTransaction", "StructuredTransaction",
    "serialize_hex", "deserialize_hex",
    # bitcoind
    "RpcContext", "json_rpc_request", "parse_rpc_response",
    "fund_raw_transaction", "sign_transaction", "send_raw_transaction",
    # Keys & committee
    "KeyPackage", "PublicKeyPackage", "gen_frost_keys",
    "CommitteeConfig", "Member", "taproot_addr_from",
]
