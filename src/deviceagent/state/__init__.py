"""Durable local state.

The store is the only component that touches the project file; the
reconciliation engine asks it to load and save whole ``LocalState``
records.
"""

from deviceagent.state.store import ProjectFileStore

__all__ = ["ProjectFileStore"]
