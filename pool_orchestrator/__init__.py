"""Elastic pool orchestrator."""

__version__ = "1.0.0"
