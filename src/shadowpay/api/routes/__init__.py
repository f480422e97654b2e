"""Relay gateway routes."""
