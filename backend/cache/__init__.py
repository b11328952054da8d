"""Measurement cache and its on-disk snapshots."""
