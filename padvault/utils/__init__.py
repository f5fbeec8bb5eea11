"""padvault - Utility modules."""
