"""
mnemo - memory capture, deduplication and retrieval.
"""

__version__ = "0.1.0"
