"""padvault - Bank export service.

Trims pad audio and packages banks into (optionally encrypted) .bank files.
"""

__all__: list[str] = []
