"""Outreach Agent: outbound reminder and campaign call dispatcher."""

__version__ = "0.1.0"
