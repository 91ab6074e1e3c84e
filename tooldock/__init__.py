"""ToolDock tool server orchestrator.

Launches and rediscovers independently running tool servers, aggregates their
tools into one namespaced catalog, and routes tool calls from an agent back to
the server that owns them over a small HTTP control channel.
"""

__version__ = "0.1.0"
