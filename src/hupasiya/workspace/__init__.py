"""Workspace adapters.

Provides the ``hn`` workbox adapter used by the CLI. Anything satisfying
the Workspace protocol can stand in for it.
"""

from hupasiya.workspace.hn import HnWorkspace

__all__ = ["HnWorkspace"]
