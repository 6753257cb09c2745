"""
Front-end response cache for Flask.

Serves fully rendered pages of anonymous GET requests from the local
filesystem, with ETag/304 revalidation, gzip negotiation and usage
statistics replay.
"""

__version__ = "1.0.0"
