"""Event detection from consecutive position samples."""

from fleetsense.detection.detector import EventDetector
from fleetsense.detection.rules import DEFAULT_RULES, RuleContext

__all__ = ["DEFAULT_RULES", "EventDetector", "RuleContext"]
