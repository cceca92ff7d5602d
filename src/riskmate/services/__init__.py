"""
Business services: billing, reconciliation, entitlements, exports
"""
