"""Utilities for chunked_uploader."""
