"""padvault - Core application modules.

Provides:
- Bank/pad/metadata schemas and the SQLite record store
- Quota-tracked blob storage
- The .bank archive codec and whole-container encryption
- Key caching on top of the admin-bank collaborators
"""

__version__ = "0.1.0"
