"""
Chainwatch - Ledger flow analysis for money-laundering detection

Traces value movement around a target address or address group and:
- Detects layering, structuring, mixing, smurfing and cycling typologies
- Scores patterns from evidence and address risk profiles
- Emits deduplicated, severity-ranked, rate-limited alerts
"""

__version__ = "0.1.0"
