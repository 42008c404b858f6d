"""Pydantic models for the puzzle domain and its agent contracts."""
