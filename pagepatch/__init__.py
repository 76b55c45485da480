"""
pagepatch - Persistent visual edits for live documents

Synthesizes stable locators for nodes (shadow roots included) and keeps a
persisted list of edits reconciled against the document as it changes.
"""

__version__ = "0.1.0"

from pagepatch.core.session import CommitResult, PatchSession, SessionConfig

__all__ = [
    "CommitResult",
    "PatchSession",
    "SessionConfig",
    "__version__",
]
