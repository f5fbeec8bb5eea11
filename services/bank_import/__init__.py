"""padvault - Bank import service.

Decrypts, validates, deduplicates and stores .bank containers.
"""

__all__: list[str] = []
