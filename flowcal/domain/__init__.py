"""Aggregation, habit scheduling, outbound feed and storage interfaces."""
