"""Core API plumbing: configuration, logging, database manager, dependencies."""
