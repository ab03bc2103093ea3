"""reqflow - project-based HTTP request templates and flows."""

__version__ = "0.1.0"
