"""Warden -- access-control sandbox for a chat-driven operations assistant.

Every side-effecting capability the assistant exposes (running host
programs, reading files, touching the shared database, loading extension
code) passes through one of the gates in this package.
"""

__version__ = "0.4.0"
