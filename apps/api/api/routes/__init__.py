"""Route modules exposed by the API package."""

from . import metrics, ops, ping, tickets

__all__ = ["metrics", "ops", "ping", "tickets"]
