"""Ports the application layer depends on."""
