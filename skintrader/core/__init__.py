"""Shared foundations: structured logging and money arithmetic."""
