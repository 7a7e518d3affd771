"""Two-way sync between a local vault directory and a GitHub repository."""

__version__ = "0.1.0"
