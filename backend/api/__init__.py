"""Queue API server (FastAPI)."""
