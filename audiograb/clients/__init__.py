"""Clients for external extraction job providers."""
