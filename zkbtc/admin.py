#!/usr/bin/env python3
# Copyright (c) 2025 The zkBitcoin developers
# Distributed under the MIT software license

"""
zkBitcoin admin CLI

Commands:
  generate-committee     Deal a t-of-n committee key and write its artifacts
  start-committee-node   Serve one member's signing endpoints
  start-orchestrator     Serve the signing coordinator for the committee
  send-transaction       Fund, sign and broadcast a raw transaction via bitcoind

Every failure is fatal: a custody service never starts in a degraded state.
"""

import argparse
import asyncio
import logging
import sys
from dataclasses import replace
from typing import List, Optional

from . import artifacts
from .committee import node, orchestrator
from .committee.ceremony import generate_committee, write_artifacts
from .config import Config, load_env_file
from .errors import ZkBitcoinError
from .json_rpc import (
    fund_raw_transaction,
    send_raw_transaction,
    sign_transaction,
)
from .taproot import taproot_addr_from
from .transaction import HexTransaction

log = logging.getLogger("zkbtc")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="zkbtc-admin", description="zkBitcoin administration")
    parser.add_argument("--log-level", default=None,
                        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
                        help="Log level (default: $ZKBTC_LOG_LEVEL or INFO)")
    parser.add_argument("--env-file", default=".env", help="Optional KEY=VALUE file")
    parser.add_argument("--network", default=None,
                        choices=["mainnet", "testnet", "signet", "regtest"],
                        help="Network used for displayed addresses")

    sub = parser.add_subparsers(dest="command", required=True)

    gen = sub.add_parser("generate-committee", help="Deal a committee key")
    gen.add_argument("--num", type=int, required=True, help="Number of members")
    gen.add_argument("--threshold", type=int, required=True, help="Signers needed")
    gen.add_argument("--output-dir", required=True, help="Directory for the artifacts")

    cn = sub.add_parser("start-committee-node", help="Run a committee member")
    cn.add_argument("--address", default=None, help="host:port to bind")
    cn.add_argument("--key-path", required=True, help="This member's key-<i>.json")
    cn.add_argument("--publickey-package-path", required=True)

    orch = sub.add_parser("start-orchestrator", help="Run the orchestrator")
    orch.add_argument("--address", default=None, help="host:port to bind")
    orch.add_argument("--publickey-package-path", required=True)
    orch.add_argument("--committee-cfg-path", required=True)

    send = sub.add_parser("send-transaction", help="Fund, sign and broadcast a transaction")
    send.add_argument("tx_hex", help="Unfunded transaction (hex)")
    send.add_argument("--rpc-address", default=None, help="bitcoind URL")
    send.add_argument("--rpc-wallet", default=None, help="bitcoind wallet")
    send.add_argument("--rpc-auth", default=None, help="user:password")
    send.add_argument("--dry-run", action="store_true", help="Fund and sign only")

    return parser


def log_zkbitcoin_addresses(config: Config):
    """Raises AddressError on a misconfigured key, which aborts startup."""
    log.info(f"- zkbitcoin_address: {taproot_addr_from(config.pubkey, config.network)}")
    log.info(f"- zkbitcoin_fund_address: {taproot_addr_from(config.fee_pubkey, config.network)}")


def cmd_generate_committee(args: argparse.Namespace, config: Config):
    committee = generate_committee(args.num, args.threshold)
    paths = write_artifacts(committee, args.output_dir)
    log.info(f"- wrote {len(paths)} files to {args.output_dir}")
    log.info(f"- committee address: "
             f"{taproot_addr_from(committee.pubkey_package.verifying_key, config.network)}")


def cmd_start_committee_node(args: argparse.Namespace, config: Config):
    key_package = artifacts.load_key_package(args.key_path)
    pubkey_package = artifacts.load_pubkey_package(args.publickey_package_path)
    asyncio.run(node.run_server(args.address, key_package, pubkey_package))


def cmd_start_orchestrator(args: argparse.Namespace, config: Config):
    pubkey_package = artifacts.load_pubkey_package(args.publickey_package_path)
    committee_cfg = artifacts.load_committee_config(args.committee_cfg_path)
    # the public key package does not record the threshold
    orchestrator.check_committee(pubkey_package, committee_cfg)
    asyncio.run(orchestrator.run_server(args.address, pubkey_package, committee_cfg,
                                        config.network))


async def _send_transaction(args: argparse.Namespace, config: Config) -> Optional[str]:
    ctx = replace(
        config,
        rpc_address=args.rpc_address or config.rpc_address,
        rpc_wallet=args.rpc_wallet or config.rpc_wallet,
        rpc_auth=args.rpc_auth or config.rpc_auth,
    ).rpc_context()
    funded_hex, _ = await fund_raw_transaction(ctx, HexTransaction(args.tx_hex))
    signed_hex, _ = await sign_transaction(ctx, HexTransaction(funded_hex))
    if args.dry_run:
        print(signed_hex)
        return None
    txid = await send_raw_transaction(ctx, HexTransaction(signed_hex))
    print(txid)
    return txid


def cmd_send_transaction(args: argparse.Namespace, config: Config):
    asyncio.run(_send_transaction(args, config))


COMMANDS = {
    "generate-committee": cmd_generate_committee,
    "start-committee-node": cmd_start_committee_node,
    "start-orchestrator": cmd_start_orchestrator,
    "send-transaction": cmd_send_transaction,
}


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    load_env_file(args.env_file)
    config = Config.from_env()
    if args.network:
        config = replace(config, network=args.network)

    logging.basicConfig(
        level=getattr(logging, args.log_level or config.log_level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    try:
        log_zkbitcoin_addresses(config)
        COMMANDS[args.command](args, config)
    except ZkBitcoinError as e:
        log.error(f"{args.command} failed: {e}")
        return 1
    except KeyboardInterrupt:
        log.info("Shutting down...")
    return 0


if __name__ == "__main__":
    sys.exit(main())
