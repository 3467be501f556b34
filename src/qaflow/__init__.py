"""qaflow - ticket QA lifecycle, agent sessions and enforcement hooks."""

__version__ = "0.1.0"
