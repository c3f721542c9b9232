"""
Media Layer.

This package is responsible for locating, downloading and validating audio.
"""

from .integrity import FileIntegrityChecker
from .resolver import YouTubeResolver

__all__ = ["FileIntegrityChecker", "YouTubeResolver"]
