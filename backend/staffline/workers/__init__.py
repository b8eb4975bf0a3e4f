"""Standalone jobs, run by a scheduler or the cron endpoints."""
