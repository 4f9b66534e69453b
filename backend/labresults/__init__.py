"""Lab results aggregation engine."""
