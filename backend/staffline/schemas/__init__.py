"""Pydantic schemas for API payloads, tool arguments and prompt context."""
