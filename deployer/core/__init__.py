"""Core — domain models, persistence, reliability and lifecycle handlers."""
