"""Logging and engine configuration."""
