# Copyright (c) 2025 The zkBitcoin developers
# Distributed under the MIT software license

"""
zkBitcoin - Error Types

Every failure raised by this package derives from ZkBitcoinError, so the
admin CLI can abort on any of them with a single handler.
"""

from typing import Optional


class ZkBitcoinError(Exception):
    """Base class for all zkbtc errors."""


# =============================================================================
# BITCOIND JSON-RPC
# =============================================================================

class RpcTransportError(ZkBitcoinError):
    """The request never produced an HTTP response (unreachable, timeout)."""
    def __init__(self, method: str, reason: str):
        self.method = method
        self.reason = reason
        super().__init__(f"{method}: transport failure: {reason}")


class RpcError(ZkBitcoinError):
    """bitcoind answered with a JSON-RPC error object (or refused the call)."""
    def __init__(self, method: str, code: Optional[int], message: str):
        self.method = method
        self.code = code
        self.message = message
        if code is None:
            super().__init__(f"{method} error: {message}")
        else:
            super().__init__(f"{method} error {code}: {message}")


class RpcDecodeError(ZkBitcoinError):
    """The response did not match the result shape expected for the method."""
    def __init__(self, method: str, reason: str, body: str = "",
                 status_code: Optional[int] = None):
        self.method = method
        self.reason = reason
        self.body = body
        self.status_code = status_code
        if status_code is None:
            super().__init__(f"{method}: cannot decode response: {reason}")
        else:
            super().__init__(f"{method}: cannot decode HTTP {status_code} response: {reason}")


class TransactionDecodeError(ZkBitcoinError):
    """Bytes are not a consensus-encoded transaction."""


# =============================================================================
# KEYS & COMMITTEE
# =============================================================================

class KeygenError(ZkBitcoinError):
    """Invalid parameters for threshold key generation."""


class CeremonyError(ZkBitcoinError):
    """The key ceremony could not produce a usable key."""


class SigningError(ZkBitcoinError):
    """A threshold signing round could not complete."""


class CommitteeConfigError(ZkBitcoinError):
    """Committee configuration is unusable."""


class ArtifactError(ZkBitcoinError):
    """A ceremony artifact could not be written or read back."""
    def __init__(self, path, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"{path}: {reason}")


class AddressError(ZkBitcoinError):
    """A public key cannot be turned into a taproot address."""
