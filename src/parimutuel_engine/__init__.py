"""
Pari-mutuel Market Engine.

Client-side orchestration for binary (YES/NO) pari-mutuel prediction markets
hosted by an already-deployed program on the Solana ledger.
The engine derives program addresses, reads and decodes market state,
and builds, simulates, submits and confirms bets, settlements and
redemptions. The program itself stays the final authority on every
state transition.
"""

__version__ = "0.1.0"
