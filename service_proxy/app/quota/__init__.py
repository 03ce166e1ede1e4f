"""
Quota package for the proxy.
"""

from .ledger import QuotaDecision, QuotaLedger, QuotaStatus

__all__ = ["QuotaDecision", "QuotaLedger", "QuotaStatus"]
