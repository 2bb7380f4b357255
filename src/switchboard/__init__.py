"""Switchboard: a single-user assistant coordinating several chat channels."""
