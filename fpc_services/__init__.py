"""
Off-chain services for an operator-run fee-payment contract (FPC).

- attestation: signs user-bound exchange-rate quotes
- topup: keeps the contract's Fee Juice reserve funded from L1
"""

__version__ = "0.3.0"
