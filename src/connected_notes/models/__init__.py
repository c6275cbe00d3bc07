"""Data models for the Connected Notes core."""
