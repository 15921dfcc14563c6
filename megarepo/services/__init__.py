"""Services implementing megarepo operations."""
