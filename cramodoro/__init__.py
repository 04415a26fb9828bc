"""Offline-first client for the Cramodoro flashcard app."""

__version__ = "0.1.0"
