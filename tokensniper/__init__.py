"""
Token Sniper Bot

Semi-autonomous sniping for newly listed Solana tokens:
- Continuous discovery of new pump.fun listings
- Multi-factor rug risk classification
- Buy/sell execution with per-mint concurrency guards
- Position ledger and deduplicated transaction history

Classify first, trade second.
"""

__version__ = "1.0.0"
