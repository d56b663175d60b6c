"""Bridges to external identity systems: the mTLS credential exchange and PEM loading."""
