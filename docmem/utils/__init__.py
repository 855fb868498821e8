"""Shared utilities: error hierarchy, structured logging, vector helpers."""
