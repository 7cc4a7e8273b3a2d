"""Shared helpers: integration error types and retry logic."""
