"""Metric types, collection, and threshold evaluation."""
