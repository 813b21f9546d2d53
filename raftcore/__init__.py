"""Deterministic Raft consensus state machine with joint-consensus reconfiguration."""

__version__ = "0.0.1"