"""AI Visibility Engine - reliability and scoring core for answer-engine monitoring."""

__version__ = "0.1.0"
