"""
zkBitcoin committee

  - config: committee configuration (threshold + member addresses)
  - ceremony: one-shot key generation and artifact layout
  - node: signing service run by each member
  - orchestrator: service coordinating signing rounds across members
"""

from .config import CommitteeConfig, Member

__all__ = ["CommitteeConfig", "Member"]
