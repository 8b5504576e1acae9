"""Conversation state: sessions, messages, persistence and the session manager."""
