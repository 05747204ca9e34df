"""Call Tracker - token-call verification and outcome scoring."""

__version__ = "0.1.0"
