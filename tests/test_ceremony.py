import json
import os
import stat

import pytest

from zkbtc import artifacts
from zkbtc.committee.ceremony import generate_committee, placeholder_address, write_artifacts
from zkbtc.errors import ArtifactError, CeremonyError, KeygenError
from zkbtc.frost import PublicKeyPackage, gen_frost_keys


def odd_then_real(odd_draws):
    """Keygen that reports an odd-y group key for the first `odd_draws` calls."""
    calls = []

    def keygen(num, threshold):
        calls.append((num, threshold))
        key_packages, pubkey_package = gen_frost_keys(num, threshold)
        if len(calls) <= odd_draws:
            odd = "03" + pubkey_package.verifying_key[2:]
            return key_packages, PublicKeyPackage(pubkey_package.verifying_shares, odd)
        while not pubkey_package.verifying_key.startswith("02"):
            key_packages, pubkey_package = gen_frost_keys(num, threshold)
        return key_packages, pubkey_package

    keygen.calls = calls
    return keygen


def test_committee_shape(committee):
    assert sorted(committee.key_packages) == [1, 2, 3]
    assert committee.pubkey_package.verifying_key_bytes()[0] == 0x02
    assert committee.config.threshold == 2
    assert [m.address for _, m in sorted(committee.config.members.items())] == [
        "http://127.0.0.1:8890",
        "http://127.0.0.1:8891",
        "http://127.0.0.1:8892",
    ]


@pytest.mark.parametrize("num, threshold", [(1, 1), (2, 2), (5, 3), (7, 7)])
def test_group_key_always_even(num, threshold):
    for _ in range(5):
        committee = generate_committee(num, threshold)
        assert committee.pubkey_package.verifying_key.startswith("02")
        assert len(committee.key_packages) == num
        assert len(committee.config.members) == num


def test_odd_keys_are_dealt_again():
    keygen = odd_then_real(2)
    committee = generate_committee(3, 2, keygen=keygen)
    assert committee.attempts == 3
    assert len(keygen.calls) == 3
    assert committee.pubkey_package.verifying_key.startswith("02")


def test_gives_up_after_max_attempts():
    keygen = odd_then_real(1000)
    with pytest.raises(CeremonyError, match="5 attempts"):
        generate_committee(3, 2, keygen=keygen, max_attempts=5)
    assert len(keygen.calls) == 5


def test_keygen_errors_are_not_retried():
    calls = []

    def keygen(num, threshold):
        calls.append(1)
        return gen_frost_keys(num, threshold)

    with pytest.raises(KeygenError):
        generate_committee(2, 3, keygen=keygen)
    assert len(calls) == 1


def test_short_keygen_output_is_rejected():
    def keygen(num, threshold):
        while True:
            key_packages, pubkey_package = gen_frost_keys(num, threshold)
            if pubkey_package.verifying_key.startswith("02"):
                key_packages.pop(num)
                return key_packages, pubkey_package

    with pytest.raises(CeremonyError, match="expected 3"):
        generate_committee(3, 2, keygen=keygen)


def test_placeholder_addresses():
    assert placeholder_address(0) == "http://127.0.0.1:8890"
    assert placeholder_address(10) == "http://127.0.0.1:8900"


def test_artifacts_written(committee, tmp_path):
    out = tmp_path / "ceremony"
    paths = write_artifacts(committee, out)

    assert sorted(p.name for p in out.iterdir()) == [
        "committee-cfg.json", "key-0.json", "key-1.json", "key-2.json",
        "publickey-package.json",
    ]
    assert [p.name for p in paths[:3]] == ["key-0.json", "key-1.json", "key-2.json"]

    cfg = json.loads((out / "committee-cfg.json").read_text())
    assert cfg["threshold"] == 2
    assert cfg["members"]["1"] == {"address": "http://127.0.0.1:8890"}


@pytest.mark.skipif(os.name != "posix", reason="file modes")
def test_key_files_are_private(committee, tmp_path):
    write_artifacts(committee, tmp_path)
    for i in range(3):
        mode = stat.S_IMODE((tmp_path / f"key-{i}.json").stat().st_mode)
        assert mode == 0o600


def test_artifacts_load_back(committee, tmp_path):
    write_artifacts(committee, tmp_path)

    assert artifacts.load_pubkey_package(tmp_path / "publickey-package.json") == \
        committee.pubkey_package
    assert artifacts.load_committee_config(tmp_path / "committee-cfg.json") == committee.config
    for ordinal, member_id in enumerate(sorted(committee.key_packages)):
        kp = artifacts.load_key_package(tmp_path / f"key-{ordinal}.json")
        assert kp == committee.key_packages[member_id]


def test_no_temp_files_left(committee, tmp_path):
    write_artifacts(committee, tmp_path)
    assert not list(tmp_path.glob("*.tmp"))


@pytest.mark.skipif(os.name != "posix", reason="file modes")
def test_stale_temp_file_does_not_leak_its_mode(committee, tmp_path):
    stale = tmp_path / "key-0.tmp"
    stale.write_text("left over by a crashed run")
    stale.chmod(0o644)

    path = tmp_path / "key-0.json"
    artifacts.save_key_package(committee.key_packages[1], path)

    assert stat.S_IMODE(path.stat().st_mode) == 0o600
    assert not stale.exists()


def test_failed_write_leaves_nothing_behind(committee, tmp_path, monkeypatch):
    def disk_full(*args, **kwargs):
        raise OSError(28, "No space left on device")

    monkeypatch.setattr(artifacts.json, "dump", disk_full)
    path = tmp_path / "key-0.json"
    with pytest.raises(ArtifactError, match="No space left"):
        artifacts.save_key_package(committee.key_packages[1], path)
    assert list(tmp_path.iterdir()) == []
