"""Shared persistence layer for the queue backend: pool, models, repositories, migrations."""
