"""State/store layer.

This package holds the per-vehicle position timeline and the store for
derived records (events, trips, learned locations, daily health).
"""
