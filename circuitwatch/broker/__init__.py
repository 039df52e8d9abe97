"""Broker capability: protocol, Kite adapter, error classification and auth state."""
