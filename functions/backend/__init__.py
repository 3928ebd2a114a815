"""
Backend package for the SEO automation API.

This package provides a FastAPI application plus the rescan scheduler,
usage tracking and WordPress automation services behind it, with store,
storage and queue abstractions so everything runs in memory for tests.
"""
