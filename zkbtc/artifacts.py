# Copyright (c) 2025 The zkBitcoin developers
# Distributed under the MIT software license

"""
zkBitcoin - Ceremony artifacts on disk

JSON files written by `generate-committee` and read back by the committee
nodes and the orchestrator at startup. Every failure here is fatal for the
process reading the file.
"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Union

from .committee.config import CommitteeConfig
from .errors import ArtifactError
from .frost import KeyPackage, PublicKeyPackage

log = logging.getLogger(__name__)

PathLike = Union[str, Path]


def _write_json(path: Path, data: Any, secret: bool = False):
    """Atomic write via temp file + rename. Secret files are 0600."""
    tmp_file = path.with_suffix(".tmp")
    mode = 0o600 if secret else 0o644
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        # a temp file left by a crashed run keeps its old mode, start fresh
        tmp_file.unlink(missing_ok=True)
        fd = os.open(tmp_file, os.O_WRONLY | os.O_CREAT | os.O_EXCL, mode)
        with os.fdopen(fd, "w") as f:
            os.fchmod(f.fileno(), mode)
            json.dump(data, f, indent=2)
        tmp_file.replace(path)
    except OSError as e:
        raise ArtifactError(path, f"cannot write file: {e}") from e
    finally:
        if tmp_file.exists():
            tmp_file.unlink()


def _read_json(path: Path) -> Any:
    try:
        with open(path) as f:
            return json.load(f)
    except OSError as e:
        raise ArtifactError(path, f"cannot read file: {e}") from e
    except json.JSONDecodeError as e:
        raise ArtifactError(path, f"invalid JSON: {e}") from e


# =============================================================================
# WRITE
# =============================================================================

def save_key_package(key_package: KeyPackage, path: PathLike):
    path = Path(path)
    _write_json(path, key_package.to_dict(), secret=True)
    log.info(f"- wrote key package of member {key_package.identifier} to {path}")


def save_pubkey_package(pubkey_package: PublicKeyPackage, path: PathLike):
    path = Path(path)
    _write_json(path, pubkey_package.to_dict())
    log.info(f"- wrote public key package to {path}")


def save_committee_config(committee_cfg: CommitteeConfig, path: PathLike):
    path = Path(path)
    _write_json(path, committee_cfg.to_dict())
    log.info(f"- wrote committee configuration to {path}")


# =============================================================================
# READ
# =============================================================================

def load_key_package(path: PathLike) -> KeyPackage:
    path = Path(path)
    data = _read_json(path)
    try:
        return KeyPackage.from_dict(data)
    except (KeyError, TypeError, ValueError) as e:
        raise ArtifactError(path, f"not a key package: {e}") from e


def load_pubkey_package(path: PathLike) -> PublicKeyPackage:
    path = Path(path)
    data = _read_json(path)
    try:
        return PublicKeyPackage.from_dict(data)
    except (AttributeError, KeyError, TypeError, ValueError) as e:
        raise ArtifactError(path, f"not a public key package: {e}") from e


def load_committee_config(path: PathLike) -> CommitteeConfig:
    """
    Raises:
        ArtifactError: unreadable file
        CommitteeConfigError: threshold == 0 or malformed content
    """
    return CommitteeConfig.from_dict(_read_json(Path(path)))
