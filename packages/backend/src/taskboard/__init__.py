"""Taskboard Realtime — fan-out gateway for the Taskboard project manager.

Delivers committed project, task, chat, comment and attachment changes
to the right private channels, and ships the client-side subscription
manager that reconciles those events into local state.
"""

__version__ = "0.1.0"
