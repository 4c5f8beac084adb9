"""Reverse proxy that forwards everything to the MGM ingestion backend.

Each forwarded request carries ``X-MGM-Client-IP`` with the best guess of the
original caller's address.
"""

__version__ = "0.1.0"
