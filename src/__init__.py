"""Cure Batch Tracker: batch production rules for a cured meat kitchen."""
