"""Blockchain gateways."""
