"""Core package for the aircon bridge - unified local, cloud and IR control of AC units."""

__all__ = [
    "config",
    "discovery",
    "errors",
    "health",
    "infrared",
    "logging",
    "metrics",
    "protocol",
    "registry",
    "scanners",
]
__version__ = "1.0.0"
