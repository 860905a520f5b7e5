# Copyright (c) 2025 The zkBitcoin developers
# Distributed under the MIT software license

"""
zkBitcoin - Committee node

Signing service run by every committee member. It holds the member's
secret key package and answers the orchestrator's two signing rounds.

Endpoints:
  GET  /health   - liveness + member identifier
  POST /round1   - fresh nonce commitments for a signing session
  POST /round2   - signature share for a signing package
  POST /abort    - drop the nonces of an abandoned session

Run:
  zkbtc-admin start-committee-node --key-path key-0.json \
      --publickey-package-path publickey-package.json
"""

import logging
import threading
import time
from typing import Callable, Dict, Optional, Tuple

import uvicorn
from fastapi import FastAPI, HTTPException
from pydantic import BaseModel

from ..constants import DEFAULT_NODE_ADDRESS, MAX_PENDING_SESSIONS, NONCE_TTL_S
from ..errors import CommitteeConfigError, SigningError
from ..frost import (
    KeyPackage,
    PublicKeyPackage,
    SigningNonces,
    SigningPackage,
    commit,
    sign_partial,
)

log = logging.getLogger(__name__)


class Round1Request(BaseModel):
    session_id: str


class Round2Request(BaseModel):
    session_id: str
    signing_package: dict


class AbortRequest(BaseModel):
    session_id: str


def split_address(address: Optional[str], default: str) -> Tuple[str, int]:
    """"host:port" (or a URL ending in host:port) to (host, port)."""
    address = address or default
    if "://" in address:
        address = address.split("://", 1)[1]
    host, sep, port = address.rstrip("/").rpartition(":")
    if not sep or not port.isdigit():
        raise CommitteeConfigError(f"invalid bind address {address!r}, expected host:port")
    return host or "127.0.0.1", int(port)


def check_key_package(key_package: KeyPackage, pubkey_package: PublicKeyPackage):
    """The key package must come from the same ceremony as the public package."""
    if key_package.verifying_key != pubkey_package.verifying_key:
        raise CommitteeConfigError("key package and public key package have different group keys")
    expected = pubkey_package.verifying_shares.get(key_package.identifier)
    if expected != key_package.verifying_share:
        raise CommitteeConfigError(
            f"member {key_package.identifier} is not in the public key package"
        )


class PendingNonces:
    """
    Round-1 nonces by session id, waiting for round 2.

    Sessions older than `ttl` seconds are dropped, and once `max_sessions`
    are pending the oldest one makes room for a new one. A dropped session
    answers round 2 with 404, so the orchestrator starts over.
    """

    def __init__(self, ttl: float = NONCE_TTL_S, max_sessions: int = MAX_PENDING_SESSIONS,
                 clock: Callable[[], float] = time.monotonic):
        self.ttl = ttl
        self.max_sessions = max_sessions
        self.clock = clock
        # insertion order is age order
        self._sessions: Dict[str, Tuple[float, SigningNonces]] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def _expire(self):
        cutoff = self.clock() - self.ttl
        expired = [sid for sid, (created, _) in self._sessions.items() if created < cutoff]
        for sid in expired:
            del self._sessions[sid]
        if expired:
            log.info(f"- dropped {len(expired)} expired session(s)")

    def put(self, session_id: str, nonces: SigningNonces) -> bool:
        """Store nonces for a new session. False if the session already exists."""
        with self._lock:
            self._expire()
            if session_id in self._sessions:
                return False
            while len(self._sessions) >= self.max_sessions:
                oldest = next(iter(self._sessions))
                del self._sessions[oldest]
                log.warning(f"- too many pending sessions, dropped {oldest}")
            self._sessions[session_id] = (self.clock(), nonces)
            return True

    def pop(self, session_id: str) -> Optional[SigningNonces]:
        with self._lock:
            self._expire()
            entry = self._sessions.pop(session_id, None)
        return entry[1] if entry is not None else None


def create_app(key_package: KeyPackage, pubkey_package: PublicKeyPackage,
               pending: Optional[PendingNonces] = None) -> FastAPI:
    check_key_package(key_package, pubkey_package)

    app = FastAPI(title="zkBitcoin committee node", version="0.1.0")
    if pending is None:
        pending = PendingNonces()
    app.state.pending = pending

    @app.get("/health")
    async def health():
        return {"status": "ok", "identifier": key_package.identifier}

    @app.post("/round1")
    async def round1(req: Round1Request):
        session_nonces, commitments = commit(key_package)
        if not pending.put(req.session_id, session_nonces):
            raise HTTPException(status_code=409, detail="session already committed")
        log.info(f"- round 1 for session {req.session_id}")
        return {"commitments": commitments.to_dict()}

    @app.post("/abort")
    async def abort(req: AbortRequest):
        dropped = pending.pop(req.session_id) is not None
        if dropped:
            log.info(f"- session {req.session_id} aborted")
        return {"dropped": dropped}

    @app.post("/round2")
    async def round2(req: Round2Request):
        session_nonces = pending.pop(req.session_id)
        if session_nonces is None:
            raise HTTPException(status_code=404, detail="unknown session")

        try:
            package = SigningPackage.from_dict(req.signing_package)
            share = sign_partial(key_package, session_nonces, package)
        except (SigningError, KeyError, TypeError, ValueError) as e:
            log.warning(f"- refusing to sign session {req.session_id}: {e}")
            raise HTTPException(status_code=400, detail=str(e))

        log.info(f"- round 2 for session {req.session_id}, message {package.message.hex()}")
        return {"share": share.to_dict()}

    return app


async def run_server(address: Optional[str], key_package: KeyPackage,
                     pubkey_package: PublicKeyPackage):
    """Serve the signing endpoints until the process is stopped."""
    host, port = split_address(address, DEFAULT_NODE_ADDRESS)
    app = create_app(key_package, pubkey_package)
    log.info(f"- committee node {key_package.identifier} listening on {host}:{port}")
    server = uvicorn.Server(uvicorn.Config(app, host=host, port=port, log_level="info"))
    await server.serve()
