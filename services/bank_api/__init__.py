"""padvault - Bank HTTP API.

FastAPI surface over bank import, export, listing and storage quota.
"""

__all__: list[str] = []
