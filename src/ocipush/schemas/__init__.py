"""Pydantic schemas for ocipush."""
