"""
LunaDAO service layer.

- ``DAOService``: the DAO's logical operations as dictionary envelopes
- ``StatusSweeper``: background thread driving the proposal status sweep
"""

from .scheduler import StatusSweeper
from .service import DAOService

__all__ = ["DAOService", "StatusSweeper"]
