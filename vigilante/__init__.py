"""Retrying, metrics, storage, liveness and header-relaying pieces for a Babylon vigilante."""

__version__ = "0.1.0"