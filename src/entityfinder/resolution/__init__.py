"""Query planning, traversal and explanation of resolution jobs."""
