"""
Spotify API Layer.

This package handles all communication with the Spotify Web API.
"""

from .auth import ClientCredentialsAuthenticator
from .client import SpotifyAPIClient
from .rate_limiter import AdaptiveRateLimiter

__all__ = ["AdaptiveRateLimiter", "ClientCredentialsAuthenticator", "SpotifyAPIClient"]
