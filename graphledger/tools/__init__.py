"""Operational tools."""
