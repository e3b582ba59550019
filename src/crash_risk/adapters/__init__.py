"""Adapters: concrete implementations of the engine ports."""
