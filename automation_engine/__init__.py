"""Automation flow-execution engine for the WhatsApp business inbox."""

__version__ = "0.1.0"
