"""Processing stages: detection, tracking, recognition and utilities."""
