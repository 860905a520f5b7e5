# Copyright (c) 2025 The zkBitcoin developers
# Distributed under the MIT software license

"""
zkBitcoin - Committee configuration

Threshold plus the network address of every member, as written to
committee-cfg.json:

    {"threshold": 2,
     "members": {"1": {"address": "http://127.0.0.1:8890"}, ...}}

The group key is not part of this file; it lives in the public key package
produced by the same ceremony.
"""

from dataclasses import dataclass, field
from typing import Dict

from ..errors import CommitteeConfigError


@dataclass(frozen=True)
class Member:
    address: str

    def to_dict(self) -> dict:
        return {"address": self.address}

    @classmethod
    def from_dict(cls, data: dict) -> "Member":
        address = data.get("address") if isinstance(data, dict) else None
        if not isinstance(address, str) or not address:
            raise CommitteeConfigError(f"member entry has no address: {data!r}")
        return cls(address=address)


@dataclass(frozen=True)
class CommitteeConfig:
    threshold: int
    members: Dict[int, Member] = field(default_factory=dict)

    def validate(self) -> "CommitteeConfig":
        """Full ceremony-time check: 0 < threshold <= number of members."""
        if self.threshold <= 0:
            raise CommitteeConfigError(f"threshold must be positive, got {self.threshold}")
        if self.threshold > len(self.members):
            raise CommitteeConfigError(
                f"threshold {self.threshold} exceeds committee size {len(self.members)}"
            )
        return self

    def to_dict(self) -> dict:
        return {
            "threshold": self.threshold,
            "members": {
                str(member_id): member.to_dict()
                for member_id, member in sorted(self.members.items())
            },
        }

    @classmethod
    def from_dict(cls, data: dict) -> "CommitteeConfig":
        """
        Parse a committee configuration.

        Only threshold == 0 (and malformed input) is rejected here; callers
        that need threshold <= members call validate().
        """
        if not isinstance(data, dict):
            raise CommitteeConfigError("committee configuration must be an object")

        threshold = data.get("threshold")
        if not isinstance(threshold, int) or isinstance(threshold, bool) or threshold < 0:
            raise CommitteeConfigError(f"invalid threshold: {threshold!r}")
        if threshold == 0:
            raise CommitteeConfigError("threshold must be positive, got 0")

        raw_members = data.get("members", {})
        if not isinstance(raw_members, dict):
            raise CommitteeConfigError("members must be an object")

        members = {}
        for member_id, member in raw_members.items():
            try:
                members[int(member_id)] = Member.from_dict(member)
            except ValueError as e:
                raise CommitteeConfigError(f"invalid member id {member_id!r}") from e

        return cls(threshold=threshold, members=members)
