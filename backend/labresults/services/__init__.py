"""Lab results engine services."""
