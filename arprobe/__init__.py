"""
AR Probe - Palm Tracking and Area Selection
============================================

Turns per-frame palm detector and hand landmark outputs into a stable,
gesture-aware hand track, and follows the areas the user selects with
their index finger.

Modules:
    - core: data model, errors, event bus, per-frame pipeline
    - models: inference engine interface and backends
    - detection: anchors, decode, NMS, rect and landmark geometry
    - tracking: palm tracker (detector scheduling + smoothing), object trackers
    - recognition: pointing classifier and area-selection state machine
    - utils: configuration, logging, performance monitoring
"""

__version__ = "1.0.0"
__author__ = "HCI Team"
