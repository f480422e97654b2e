"""Relay gateway HTTP API."""
