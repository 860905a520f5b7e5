# Copyright (c) 2025 The zkBitcoin developers
# Distributed under the MIT software license

"""
zkBitcoin - Key ceremony

One-shot generation of the committee key and its artifacts:

  output_dir/
    key-0.json ... key-<n-1>.json   one secret key package per member (0600)
    publickey-package.json          group key + verifying shares
    committee-cfg.json              threshold + placeholder member addresses

Taproot output keys are derived from the x-only group key, which implies
an even y coordinate. A group key with odd y would silently pay to a key
the committee cannot sign for, so keys are dealt again from scratch until
the compressed group key starts with 0x02 (about half of the draws).
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Tuple, Union

from .. import artifacts
from ..constants import (
    COMMITTEE_CFG_FILE,
    EVEN_Y_PREFIX,
    KEY_FILE_TEMPLATE,
    MAX_KEYGEN_ATTEMPTS,
    PLACEHOLDER_BASE_PORT,
    PLACEHOLDER_HOST,
    PUBKEY_PACKAGE_FILE,
)
from ..errors import CeremonyError
from ..frost import KeyPackage, PublicKeyPackage, gen_frost_keys
from .config import CommitteeConfig, Member

log = logging.getLogger(__name__)

Keygen = Callable[[int, int], Tuple[Dict[int, KeyPackage], PublicKeyPackage]]


@dataclass(frozen=True)
class Committee:
    """Everything one ceremony produces, before it is written out."""
    key_packages: Dict[int, KeyPackage]
    pubkey_package: PublicKeyPackage
    config: CommitteeConfig
    attempts: int = 1


def placeholder_address(ordinal: int) -> str:
    """Local endpoint of member `ordinal` for multi-process testing."""
    return f"{PLACEHOLDER_HOST}:{PLACEHOLDER_BASE_PORT + ordinal}"


def generate_committee(num: int, threshold: int, keygen: Keygen = gen_frost_keys,
                       max_attempts: int = MAX_KEYGEN_ATTEMPTS) -> Committee:
    """
    Deal a t-of-n committee key whose group key has even y.

    Errors from `keygen` (e.g. threshold > num) propagate on the first
    attempt. The attempt cap only guards against a broken randomness source.

    Raises:
        CeremonyError: no even-y key after max_attempts, or keygen returned
            the wrong number of key packages
    """
    for attempt in range(1, max_attempts + 1):
        key_packages, pubkey_package = keygen(num, threshold)
        if pubkey_package.verifying_key_bytes()[0] == EVEN_Y_PREFIX:
            break
        log.debug(f"- attempt {attempt}: group key has odd y, dealing again")
    else:
        raise CeremonyError(f"no even-y group key after {max_attempts} attempts")

    if len(key_packages) != num:
        raise CeremonyError(f"keygen returned {len(key_packages)} key packages, expected {num}")

    log.info(f"- {threshold}-of-{num} committee key generated after {attempt} attempt(s)")
    log.info(f"- group key: {pubkey_package.verifying_key}")

    members = {
        member_id: Member(address=placeholder_address(ordinal))
        for ordinal, member_id in enumerate(sorted(key_packages))
    }
    config = CommitteeConfig(threshold=threshold, members=members).validate()

    return Committee(key_packages, pubkey_package, config, attempts=attempt)


def write_artifacts(committee: Committee, output_dir: Union[str, Path]) -> List[Path]:
    """
    Write the ceremony artifacts. Key files are only readable by their owner;
    handing each one to its member is up to the operator.

    Returns:
        written paths (key files first)
    """
    output_dir = Path(output_dir)
    written = []

    for ordinal, member_id in enumerate(sorted(committee.key_packages)):
        path = output_dir / KEY_FILE_TEMPLATE.format(ordinal=ordinal)
        artifacts.save_key_package(committee.key_packages[member_id], path)
        written.append(path)

    path = output_dir / PUBKEY_PACKAGE_FILE
    artifacts.save_pubkey_package(committee.pubkey_package, path)
    written.append(path)

    path = output_dir / COMMITTEE_CFG_FILE
    artifacts.save_committee_config(committee.config, path)
    written.append(path)

    return written
