"""Ticket OPS API application."""
