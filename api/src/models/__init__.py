"""Data models for the FastAPI service.

This package contains Pydantic models for request/response validation,
database rows, and the values passed through the submission pipeline.
"""
