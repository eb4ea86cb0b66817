#!/usr/bin/env python3
"""
vdtier – tiered duplicate / near-duplicate video detection (package).
"""
__all__ = [
    "errors",
    "models",
    "cache",
    "store",
    "probe",
    "frames",
    "descriptors",
    "grouping",
    "progress",
    "pipeline",
    "results",
    "years",
    "video_tiers",
]
