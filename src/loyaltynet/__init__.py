"""Client for the loyalty points network: identity enrollment and contract transactions."""

__version__ = "0.1.0"
