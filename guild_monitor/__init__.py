"""
Guild monitoring engine for Tibia guilds.

Tracks online presence and deaths of the characters of configured guilds
using the TibiaData API as the only source of truth.
"""

__version__ = "0.1.0"
