"""Secret stash module.

This module handles:
- Stash records and their stores (in-memory, SQL)
- The reuse-or-replace decision per build target
"""

from buildstash.stash.store import StashRecord

__all__ = ["StashRecord"]
