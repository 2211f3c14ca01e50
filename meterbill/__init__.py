"""
Household Meter Billing - Source Package

Records electricity and shared water meter readings for several tenants,
computes their bills and keeps the history in a Google Sheets spreadsheet.

DESIGN PRINCIPLES:
1. Bill arithmetic is pure and deterministic
2. Validation happens before anything is persisted
3. Authorization failures always end the session
4. Every submission is auditable
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Household Meter Billing Team"
