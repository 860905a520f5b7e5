# Copyright (c) 2025 The zkBitcoin developers
# Distributed under the MIT software license

"""
zkBitcoin - Orchestrator

Coordinates a threshold signature across the committee nodes listed in
committee-cfg.json. Deciding whether a spend is authorized happens before a
message ever reaches this service.

Endpoints:
  GET  /health     - liveness
  GET  /committee  - threshold, members and the committee's taproot address
  POST /sign       - run both signing rounds for a 32-byte message

Run:
  zkbtc-admin start-orchestrator --publickey-package-path publickey-package.json \
      --committee-cfg-path committee-cfg.json
"""

import asyncio
import logging
import secrets
from typing import Dict, List, Optional, Tuple

import httpx
import uvicorn
from fastapi import FastAPI, HTTPException
from pydantic import BaseModel

from ..constants import DEFAULT_NETWORK, DEFAULT_ORCHESTRATOR_ADDRESS
from ..errors import CommitteeConfigError, SigningError
from ..frost import (
    PublicKeyPackage,
    SignatureShare,
    SigningCommitments,
    SigningPackage,
    aggregate,
)
from ..taproot import taproot_addr_from
from .config import CommitteeConfig
from .node import split_address

log = logging.getLogger(__name__)

# Seconds to wait for a committee node during a round
MEMBER_TIMEOUT_S = 5


class SignRequest(BaseModel):
    message: str


def check_committee(pubkey_package: PublicKeyPackage, committee_cfg: CommitteeConfig):
    """
    Startup checks. The public key package does not record the threshold,
    so the configuration's threshold is trusted only if it is positive and
    every member has a verifying share.
    """
    if committee_cfg.threshold <= 0:
        raise CommitteeConfigError(f"threshold must be positive, got {committee_cfg.threshold}")
    committee_cfg.validate()
    unknown = sorted(set(committee_cfg.members) - set(pubkey_package.verifying_shares))
    if unknown:
        raise CommitteeConfigError(f"members {unknown} are not in the public key package")


class Orchestrator:
    """
    Drives FROST signing rounds against the committee nodes.

    Usage:
        orchestrator = Orchestrator(pubkey_package, committee_cfg)
        signature = await orchestrator.sign(sighash)
    """

    def __init__(self, pubkey_package: PublicKeyPackage, committee_cfg: CommitteeConfig,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        check_committee(pubkey_package, committee_cfg)
        self.pubkey_package = pubkey_package
        self.committee_cfg = committee_cfg
        self.transport = transport

    async def _post(self, client: httpx.AsyncClient, member_id: int,
                    path: str, payload: dict) -> dict:
        url = f"{self.committee_cfg.members[member_id].address}{path}"
        try:
            resp = await client.post(url, json=payload, timeout=MEMBER_TIMEOUT_S)
        except httpx.HTTPError as e:
            raise SigningError(f"member {member_id} unreachable at {url}: {e}") from e
        if resp.status_code != 200:
            raise SigningError(f"member {member_id} refused {path}: {resp.status_code} {resp.text}")
        try:
            return resp.json()
        except ValueError as e:
            raise SigningError(f"member {member_id} sent invalid JSON for {path}") from e

    async def _gather(self, coros) -> list:
        """asyncio.gather that cancels the remaining requests on the first failure."""
        tasks = [asyncio.ensure_future(c) for c in coros]
        try:
            return await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

    async def _abort(self, client: httpx.AsyncClient, signers: List[int], session_id: str):
        """Ask the signers to drop the nonces of a failed session."""
        results = await asyncio.gather(*(
            self._post(client, i, "/abort", {"session_id": session_id})
            for i in signers
        ), return_exceptions=True)
        for member_id, result in zip(signers, results):
            if isinstance(result, Exception):
                log.warning(f"- could not abort session {session_id} on member {member_id}: {result}")

    async def _rounds(self, client: httpx.AsyncClient, signers: List[int], session_id: str,
                      message: bytes) -> Tuple[SigningPackage, list]:
        round1 = await self._gather(
            self._post(client, i, "/round1", {"session_id": session_id})
            for i in signers
        )
        commitments: Dict[int, SigningCommitments] = {}
        for member_id, resp in zip(signers, round1):
            try:
                c = SigningCommitments.from_dict(resp["commitments"])
            except (KeyError, TypeError, ValueError) as e:
                raise SigningError(f"member {member_id} sent malformed commitments") from e
            if c.identifier != member_id:
                raise SigningError(f"member {member_id} committed as {c.identifier}")
            commitments[member_id] = c

        package = SigningPackage(message=message, commitments=commitments)
        round2 = await self._gather(
            self._post(client, i, "/round2",
                       {"session_id": session_id, "signing_package": package.to_dict()})
            for i in signers
        )
        return package, round2

    async def sign(self, message: bytes) -> bytes:
        """
        Collect a threshold signature on a 32-byte message.

        The first `threshold` members (by identifier) are asked to sign. If
        a round fails, the signers are told to drop the session.

        Raises:
            SigningError: a member is unreachable, refuses, or sends a bad share
        """
        signers = sorted(self.committee_cfg.members)[:self.committee_cfg.threshold]
        session_id = secrets.token_hex(16)
        log.info(f"- signing session {session_id} with members {signers}")

        async with httpx.AsyncClient(transport=self.transport) as client:
            try:
                package, round2 = await self._rounds(client, signers, session_id, message)
            except SigningError:
                await self._abort(client, signers, session_id)
                raise

        try:
            shares = [SignatureShare.from_dict(resp["share"]) for resp in round2]
        except (KeyError, TypeError, ValueError) as e:
            raise SigningError("malformed signature share") from e
        signature = aggregate(package, shares, self.pubkey_package)
        log.info(f"- session {session_id} signature: {signature.hex()}")
        return signature


def create_app(orchestrator: Orchestrator, network: str = DEFAULT_NETWORK) -> FastAPI:
    app = FastAPI(title="zkBitcoin orchestrator", version="0.1.0")

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    @app.get("/committee")
    async def committee():
        cfg = orchestrator.committee_cfg
        return {
            **cfg.to_dict(),
            "verifying_key": orchestrator.pubkey_package.verifying_key,
            "address": taproot_addr_from(orchestrator.pubkey_package.verifying_key, network),
        }

    @app.post("/sign")
    async def sign(req: SignRequest):
        try:
            message = bytes.fromhex(req.message)
        except ValueError:
            raise HTTPException(status_code=400, detail="message must be hex")
        if len(message) != 32:
            raise HTTPException(status_code=400, detail="message must be a 32-byte digest")
        try:
            signature = await orchestrator.sign(message)
        except SigningError as e:
            log.error(f"- signing failed: {e}")
            raise HTTPException(status_code=502, detail=str(e))
        return {"signature": signature.hex()}

    return app


async def run_server(address: Optional[str], pubkey_package: PublicKeyPackage,
                     committee_cfg: CommitteeConfig, network: str = DEFAULT_NETWORK):
    """Validate the committee, then serve until the process is stopped."""
    orchestrator = Orchestrator(pubkey_package, committee_cfg)
    host, port = split_address(address, DEFAULT_ORCHESTRATOR_ADDRESS)
    app = create_app(orchestrator, network)
    log.info(f"- orchestrator for a {committee_cfg.threshold}-of-{len(committee_cfg.members)} "
             f"committee listening on {host}:{port}")
    server = uvicorn.Server(uvicorn.Config(app, host=host, port=port, log_level="info"))
    await server.serve()
