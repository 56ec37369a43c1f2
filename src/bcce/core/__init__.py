"""Core data models: workflow definitions and run records."""
