"""
Household Reconciler - Source Package

The transaction reconciliation engine behind a household finance tracker.
Bank transactions arrive from CSV exports, forwarded alert emails and a
synced spreadsheet; the engine stores them once, links them to budget
categories and scheduled events, and computes the monthly money status.

DESIGN PRINCIPLES:
1. Every source is normalized to one shape before it touches storage
2. Importing the same data twice never creates duplicates
3. A linked event reflects what was actually paid
4. Every step must be auditable
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Household Reconciler Team"
