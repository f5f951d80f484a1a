"""
Moderation module: the content filter applied before relay.
"""

from chatmesh.moderation.filter import ContentFilter

__all__ = ["ContentFilter"]
