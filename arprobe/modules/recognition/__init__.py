"""Pointing gesture recognition and area selection."""
from .area_selector import AreaSelector, AreaSelectorConfig, ChatteringFilter, PointingClassifier

__all__ = ["AreaSelector", "AreaSelectorConfig", "ChatteringFilter", "PointingClassifier"]
