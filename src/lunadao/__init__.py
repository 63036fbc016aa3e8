"""
LunaDAO: token-weighted governance engine.

Members propose actions, vote with power derived from token holdings plus
delegation, and passed proposals execute their actions after a delay.
"""

__version__ = "0.1.0"

from .errors import GovernanceError
from .governance import GovernanceConfig, GovernanceEngine

__all__ = ["GovernanceConfig", "GovernanceEngine", "GovernanceError", "__version__"]
