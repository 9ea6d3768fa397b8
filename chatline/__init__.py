"""Chatline: AI chat backend with persistent, reconciled transcripts."""
