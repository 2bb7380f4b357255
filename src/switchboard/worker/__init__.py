"""Worker boundary: the isolated process that runs the agent.

The coordinator talks to it only through the envelopes in ``protocol``.
"""
