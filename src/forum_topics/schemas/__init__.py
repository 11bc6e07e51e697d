"""Pydantic schemas for topic engine results and requests."""
