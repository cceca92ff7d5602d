"""
RiskMate backend
Billing reconciliation, entitlements and audit-ready PDF/proof-pack generation
"""

__version__ = "0.1.0"
