"""Sidenote: an AI reading assistant for Hacker News stories and discussions."""

__version__ = "0.1.0"
