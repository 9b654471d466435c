"""Endpoint inventory reconciliation across Directory, RMM and endpoint protection."""

__version__ = "1.0.0"
