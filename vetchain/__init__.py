"""VetChain: orchestration layer for a veterinary animal-asset ledger."""

__version__ = "0.1.0"
