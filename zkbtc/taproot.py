# Copyright (c) 2025 The zkBitcoin developers
# Distributed under the MIT software license

"""
zkBitcoin - Taproot addresses

Key-path-only P2TR addresses (BIP-86 style tweak, no script tree) for the
zkBitcoin public keys.
"""

from bip_utils import SegwitBech32Encoder
from coincurve import PublicKey

from .constants import DEFAULT_NETWORK, NETWORK_HRP
from .errors import AddressError
from .frost import N, tagged_hash


def _xonly(pubkey: bytes) -> bytes:
    if len(pubkey) == 32:
        return pubkey
    if len(pubkey) == 33 and pubkey[0] in (2, 3):
        return pubkey[1:]
    raise AddressError(f"expected a 32-byte x-only or 33-byte compressed key, got {len(pubkey)} bytes")


def taproot_output_key(internal_key: bytes) -> bytes:
    """Tweak an internal key with an empty script tree: Q = P + H(P)G."""
    xonly = _xonly(internal_key)
    try:
        point = PublicKey(b"\x02" + xonly)
    except ValueError as e:
        raise AddressError(f"{xonly.hex()} is not a valid public key") from e

    tweak = tagged_hash("TapTweak", xonly)
    if int.from_bytes(tweak, "big") >= N:
        raise AddressError("tweak is out of range")
    return point.add(tweak).format(compressed=True)[1:]


def taproot_addr_from(pubkey: str, network: str = DEFAULT_NETWORK) -> str:
    """
    Bech32m P2TR address of a hex public key.

    Raises:
        AddressError: malformed key or unknown network
    """
    if network not in NETWORK_HRP:
        raise AddressError(f"unknown network {network!r}")
    try:
        key = bytes.fromhex(pubkey)
    except ValueError as e:
        raise AddressError(f"public key is not hex: {pubkey!r}") from e

    output_key = taproot_output_key(key)
    # witness v1 is bech32m encoded
    return SegwitBech32Encoder.Encode(NETWORK_HRP[network], 1, output_key)
