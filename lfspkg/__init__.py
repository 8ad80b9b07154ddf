# lfspkg/__init__.py
"""lfspkg - source-based package builder for a from-scratch Linux system."""

__version__ = "1.0.0"
