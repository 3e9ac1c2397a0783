"""Stablecoin bridging over the Relay network."""

__version__ = "0.1.0"
