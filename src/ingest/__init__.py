"""Provider download and ingest pipeline.

This module streams provider cell exports, filters rows by operator
codes, and orchestrates staged database builds.
"""
