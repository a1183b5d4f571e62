"""Point-in-time account balance reconstruction over a mirrored ledger."""

__version__ = "0.1.0"
