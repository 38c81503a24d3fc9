"""Flight Information System: status and resource synchronization service."""
