"""Output reporters: rich terminal display and GitHub PR comments."""
