"""Learned locations from repeated dwell points."""

from fleetsense.locations.clusterer import LocationClusterer
from fleetsense.locations.dwell import find_dwell_candidates

__all__ = ["LocationClusterer", "find_dwell_candidates"]
