"""Pydantic schemas for external feeds and the HTTP API."""
