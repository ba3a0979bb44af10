"""API route modules."""

from visibility_engine.api.routes import configs, engines, health, jobs, scores

__all__ = ["configs", "engines", "health", "jobs", "scores"]
