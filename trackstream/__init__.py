"""
trackstream: a range-aware audio streaming API backed by the Spotify catalog
and a local disk cache of YouTube audio.
"""

__version__ = "1.0.0"
