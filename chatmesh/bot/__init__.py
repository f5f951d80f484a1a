"""
Bot module: command surface, reply texts and the dispatcher.

The dispatcher is imported from chatmesh.bot.dispatcher directly; this
package only exposes the leaf modules so the session layer can use the
reply texts without importing the dispatcher.
"""

from chatmesh.bot.commands import Command, parse_command

__all__ = ["Command", "parse_command"]
