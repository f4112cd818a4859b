"""
AgentRelay — chat control plane for a remote AI coding agent.

AgentRelay sits between a human on a chat platform and an agent backend
that streams events (text deltas, tool calls, permission requests,
questions).  It decides which chat input is acceptable right now, folds
the agent's noisy event stream into clean notifications, and paces tool
output into a bounded number of chat messages.

Package layout (src/agentrelay/):
  core/interaction/ — interaction state, manager, input guard
  core/summary/     — event aggregation, formatting, tool-message batching
  core/relay.py     — control plane wiring (one conversation per process)
  channels/         — outbound chat sinks (Telegram)
  cli/              — Click CLI entry point
"""

__version__ = "0.4.0"
__all__ = ["__version__"]
