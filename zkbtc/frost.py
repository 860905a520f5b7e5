# Copyright (c) 2025 The zkBitcoin developers
# Distributed under the MIT software license

"""
zkBitcoin - FROST threshold Schnorr signatures over secp256k1

Provides the threshold capability the rest of the package relies on:

  - gen_frost_keys(n, t): dealer key generation (Shamir shares of a fresh
    group secret), one KeyPackage per member plus the PublicKeyPackage
  - commit(key_package): round 1, fresh nonce pair and its commitments
  - sign_partial(key_package, nonces, signing_package): round 2
  - aggregate(...): combine t shares into a BIP-340 signature

Signatures verify against the x-only group key, so the group key must have
an even y coordinate (see zkbtc.committee.ceremony).

Point arithmetic is delegated to libsecp256k1 through coincurve.
"""

import hashlib
import secrets
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Tuple

from coincurve import PrivateKey, PublicKey, PublicKeyXOnly

from .constants import EVEN_Y_PREFIX
from .errors import KeygenError, SigningError

# Order of the secp256k1 group
N = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141

# Identifiers are serialized as u16 in committee files
MAX_SIGNERS = 0xFFFF


# =============================================================================
# SCALAR / POINT HELPERS
# =============================================================================

def tagged_hash(tag: str, msg: bytes) -> bytes:
    tag_hash = hashlib.sha256(tag.encode()).digest()
    return hashlib.sha256(tag_hash + tag_hash + msg).digest()


def _random_scalar() -> int:
    return secrets.randbelow(N - 1) + 1


def _scalar_bytes(k: int) -> bytes:
    return (k % N).to_bytes(32, "big")


def _base_mul(k: int) -> PublicKey:
    return PrivateKey.from_int(k % N).public_key


def _point_mul(point: PublicKey, k: int) -> PublicKey:
    return point.multiply(_scalar_bytes(k))


def _point_add(points: Iterable[PublicKey]) -> PublicKey:
    return PublicKey.combine_keys(list(points))


def _negate(point: PublicKey) -> PublicKey:
    data = point.format(compressed=True)
    return PublicKey(bytes([data[0] ^ 1]) + data[1:])


def has_even_y(point: PublicKey) -> bool:
    return point.format(compressed=True)[0] == EVEN_Y_PREFIX


def _point(hex_point: str) -> PublicKey:
    return PublicKey(bytes.fromhex(hex_point))


def _hex(point: PublicKey) -> str:
    return point.format(compressed=True).hex()


# =============================================================================
# KEY PACKAGES
# =============================================================================

@dataclass(frozen=True)
class KeyPackage:
    """Secret material of one committee member. Never leaves its holder."""
    identifier: int
    signing_share: int = field(repr=False)
    verifying_share: str    # compressed point, hex
    verifying_key: str      # group key, compressed point, hex
    min_signers: int

    def to_dict(self) -> dict:
        return {
            "identifier": self.identifier,
            "signing_share": _scalar_bytes(self.signing_share).hex(),
            "verifying_share": self.verifying_share,
            "verifying_key": self.verifying_key,
            "min_signers": self.min_signers,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "KeyPackage":
        package = cls(
            identifier=int(data["identifier"]),
            signing_share=int(data["signing_share"], 16),
            verifying_share=data["verifying_share"],
            verifying_key=data["verifying_key"],
            min_signers=int(data["min_signers"]),
        )
        if _hex(_base_mul(package.signing_share)) != package.verifying_share:
            raise ValueError("signing share does not match verifying share")
        _point(package.verifying_key)
        return package


@dataclass(frozen=True)
class PublicKeyPackage:
    """Group key and every member's verifying share. Public."""
    verifying_shares: Dict[int, str]
    verifying_key: str

    def verifying_key_bytes(self) -> bytes:
        return bytes.fromhex(self.verifying_key)

    def to_dict(self) -> dict:
        return {
            "verifying_shares": {
                str(identifier): share
                for identifier, share in sorted(self.verifying_shares.items())
            },
            "verifying_key": self.verifying_key,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "PublicKeyPackage":
        shares = {int(k): v for k, v in data["verifying_shares"].items()}
        for share in shares.values():
            _point(share)
        _point(data["verifying_key"])
        return cls(verifying_shares=shares, verifying_key=data["verifying_key"])


def gen_frost_keys(num: int, threshold: int) -> Tuple[Dict[int, KeyPackage], PublicKeyPackage]:
    """
    Deal a fresh t-of-n key.

    Every call draws new randomness. The dealer polynomial only exists
    inside this function.

    Raises:
        KeygenError: threshold/num combination is invalid
    """
    if threshold < 1:
        raise KeygenError(f"threshold must be at least 1, got {threshold}")
    if num < threshold:
        raise KeygenError(f"cannot have {num} members with threshold {threshold}")
    if num > MAX_SIGNERS:
        raise KeygenError(f"at most {MAX_SIGNERS} members are supported, got {num}")

    coefficients = [_random_scalar() for _ in range(threshold)]

    def f(x: int) -> int:
        acc = 0
        for coefficient in reversed(coefficients):
            acc = (acc * x + coefficient) % N
        return acc

    verifying_key = _hex(_base_mul(coefficients[0]))

    key_packages = {}
    verifying_shares = {}
    for identifier in range(1, num + 1):
        share = f(identifier)
        verifying_share = _hex(_base_mul(share))
        verifying_shares[identifier] = verifying_share
        key_packages[identifier] = KeyPackage(
            identifier=identifier,
            signing_share=share,
            verifying_share=verifying_share,
            verifying_key=verifying_key,
            min_signers=threshold,
        )

    return key_packages, PublicKeyPackage(verifying_shares, verifying_key)


# =============================================================================
# SIGNING
# =============================================================================

@dataclass(frozen=True)
class SigningNonces:
    """Round-1 secret nonces. Single use."""
    hiding: int = field(repr=False)
    binding: int = field(repr=False)


@dataclass(frozen=True)
class SigningCommitments:
    identifier: int
    hiding: str
    binding: str

    def to_dict(self) -> dict:
        return {"identifier": self.identifier, "hiding": self.hiding, "binding": self.binding}

    @classmethod
    def from_dict(cls, data: dict) -> "SigningCommitments":
        commitments = cls(int(data["identifier"]), data["hiding"], data["binding"])
        _point(commitments.hiding)
        _point(commitments.binding)
        return commitments


@dataclass(frozen=True)
class SigningPackage:
    """Message and the round-1 commitments of the chosen signers."""
    message: bytes
    commitments: Dict[int, SigningCommitments]

    def __post_init__(self):
        if len(self.message) != 32:
            raise SigningError(f"message must be a 32-byte digest, got {len(self.message)} bytes")

    @property
    def signers(self) -> List[int]:
        return sorted(self.commitments)

    def to_dict(self) -> dict:
        return {
            "message": self.message.hex(),
            "commitments": [self.commitments[i].to_dict() for i in self.signers],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "SigningPackage":
        commitments = [SigningCommitments.from_dict(c) for c in data["commitments"]]
        return cls(
            message=bytes.fromhex(data["message"]),
            commitments={c.identifier: c for c in commitments},
        )


@dataclass(frozen=True)
class SignatureShare:
    identifier: int
    share: int

    def to_dict(self) -> dict:
        return {"identifier": self.identifier, "share": _scalar_bytes(self.share).hex()}

    @classmethod
    def from_dict(cls, data: dict) -> "SignatureShare":
        return cls(int(data["identifier"]), int(data["share"], 16) % N)


def commit(key_package: KeyPackage) -> Tuple[SigningNonces, SigningCommitments]:
    """Round 1: draw a nonce pair and publish its commitments."""
    nonces = SigningNonces(_random_scalar(), _random_scalar())
    commitments = SigningCommitments(
        identifier=key_package.identifier,
        hiding=_hex(_base_mul(nonces.hiding)),
        binding=_hex(_base_mul(nonces.binding)),
    )
    return nonces, commitments


def _binding_factors(verifying_key: bytes, package: SigningPackage) -> Dict[int, int]:
    encoded = b"".join(
        identifier.to_bytes(32, "big")
        + bytes.fromhex(package.commitments[identifier].hiding)
        + bytes.fromhex(package.commitments[identifier].binding)
        for identifier in package.signers
    )
    prefix = (
        verifying_key
        + tagged_hash("FROST/msg", package.message)
        + tagged_hash("FROST/commitments", encoded)
    )
    return {
        identifier: int.from_bytes(
            tagged_hash("FROST/rho", prefix + identifier.to_bytes(32, "big")), "big"
        ) % N
        for identifier in package.signers
    }


def _group_commitment(package: SigningPackage, rhos: Dict[int, int]) -> PublicKey:
    return _point_add(
        _point_add([_point(c.hiding), _point_mul(_point(c.binding), rhos[i])])
        for i, c in sorted(package.commitments.items())
    )


def _lagrange(identifier: int, signers: List[int]) -> int:
    num, den = 1, 1
    for other in signers:
        if other == identifier:
            continue
        num = (num * other) % N
        den = (den * (other - identifier)) % N
    return (num * pow(den, -1, N)) % N


def _challenge(group_commitment: PublicKey, verifying_key: bytes, message: bytes) -> int:
    r_x = group_commitment.format(compressed=True)[1:]
    return int.from_bytes(
        tagged_hash("BIP0340/challenge", r_x + verifying_key[1:] + message), "big"
    ) % N


def _check_group_key(verifying_key: bytes):
    if verifying_key[0] != EVEN_Y_PREFIX:
        raise SigningError("group key has odd y; it cannot sign for its x-only key")


def sign_partial(key_package: KeyPackage, nonces: SigningNonces,
                 package: SigningPackage) -> SignatureShare:
    """
    Round 2: this member's share of the signature.

    Raises:
        SigningError: the package does not include this member, has too few
            signers, or does not carry this member's round-1 commitments
    """
    identifier = key_package.identifier
    if identifier not in package.commitments:
        raise SigningError(f"member {identifier} is not part of this signing package")
    if len(package.commitments) < key_package.min_signers:
        raise SigningError(
            f"{len(package.commitments)} signers, at least {key_package.min_signers} needed"
        )
    own = package.commitments[identifier]
    if own.hiding != _hex(_base_mul(nonces.hiding)) or own.binding != _hex(_base_mul(nonces.binding)):
        raise SigningError(f"commitments of member {identifier} do not match its nonces")

    verifying_key = bytes.fromhex(key_package.verifying_key)
    _check_group_key(verifying_key)

    rhos = _binding_factors(verifying_key, package)
    group_commitment = _group_commitment(package, rhos)
    challenge = _challenge(group_commitment, verifying_key, package.message)
    lam = _lagrange(identifier, package.signers)

    hiding, binding = nonces.hiding, nonces.binding
    if not has_even_y(group_commitment):
        hiding, binding = N - hiding, N - binding

    share = (hiding + binding * rhos[identifier]
             + lam * key_package.signing_share * challenge) % N
    return SignatureShare(identifier, share)


def verify_share(pubkey_package: PublicKeyPackage, package: SigningPackage,
                 share: SignatureShare) -> bool:
    """Check one member's signature share against its verifying share."""
    if share.identifier not in package.commitments:
        return False
    if share.identifier not in pubkey_package.verifying_shares:
        return False
    if share.share == 0:
        return False

    verifying_key = pubkey_package.verifying_key_bytes()
    rhos = _binding_factors(verifying_key, package)
    group_commitment = _group_commitment(package, rhos)
    challenge = _challenge(group_commitment, verifying_key, package.message)
    lam = _lagrange(share.identifier, package.signers)

    commitment = package.commitments[share.identifier]
    r_share = _point_add([
        _point(commitment.hiding),
        _point_mul(_point(commitment.binding), rhos[share.identifier]),
    ])
    if not has_even_y(group_commitment):
        r_share = _negate(r_share)

    y_share = _point(pubkey_package.verifying_shares[share.identifier])
    expected = _point_add([r_share, _point_mul(y_share, challenge * lam)])
    return _hex(_base_mul(share.share)) == _hex(expected)


def aggregate(package: SigningPackage, shares: Iterable[SignatureShare],
              pubkey_package: PublicKeyPackage) -> bytes:
    """
    Combine signature shares into a 64-byte BIP-340 signature.

    Raises:
        SigningError: a share is missing, invalid, or the result does not verify
    """
    shares = {s.identifier: s for s in shares}
    if sorted(shares) != package.signers:
        raise SigningError(
            f"shares from {sorted(shares)} do not match signers {package.signers}"
        )

    invalid = [i for i, s in sorted(shares.items()) if not verify_share(pubkey_package, package, s)]
    if invalid:
        raise SigningError(f"invalid signature shares from members {invalid}")

    verifying_key = pubkey_package.verifying_key_bytes()
    _check_group_key(verifying_key)
    rhos = _binding_factors(verifying_key, package)
    group_commitment = _group_commitment(package, rhos)

    z = sum(s.share for s in shares.values()) % N
    signature = group_commitment.format(compressed=True)[1:] + _scalar_bytes(z)

    if not verify_signature(pubkey_package.verifying_key, package.message, signature):
        raise SigningError("aggregated signature does not verify")
    return signature


def verify_signature(verifying_key: str, message: bytes, signature: bytes) -> bool:
    """BIP-340 verification against the x-only form of the group key."""
    xonly = bytes.fromhex(verifying_key)[-32:]
    return PublicKeyXOnly(xonly).verify(signature, message)
