"""Akira render service: composites AI-generated animation overlays onto uploaded videos."""

__version__ = "0.1.0"
