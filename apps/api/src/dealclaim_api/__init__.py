"""Claim & redemption lifecycle service for time-bounded vendor deals."""

__version__ = "0.1.0"
