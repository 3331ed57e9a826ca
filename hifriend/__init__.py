"""HiFriend - language server session supervisor.

Spawns the hi-friend server per workspace folder, gates it on version
compatibility and hands a live transport to the protocol client.
"""

__version__ = "0.1.0"
