"""Chatshelf: pinned chats, folders and identity reconciliation for a host chat collection."""

__version__ = "1.0.0"
