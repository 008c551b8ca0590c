"""Git, GitHub and CI environment helpers."""
