"""Storage layer and SDK client.

This module stages and publishes the tower database file and exposes
the host-facing download client.
"""
