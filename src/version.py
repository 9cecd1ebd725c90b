# src/version.py - v1
"""Package version, reported in every manifest's runtime block."""

__version__ = "1.0.0"
