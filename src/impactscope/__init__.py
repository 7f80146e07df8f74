"""impactscope - test-impact analysis for resource changes."""

__version__ = "0.1.0"
