"""VRF-driven periodic raffle operator."""

__version__ = "0.1.0"
