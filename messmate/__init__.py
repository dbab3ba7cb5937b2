"""
MessMate - Sync Core

Shared household ("mess") expense tracking: meals, deposits, meal costs,
shared and individual costs, membership, and monthly balances.

DESIGN PRINCIPLES:
1. Remote first, local when the remote is unreachable
2. Never guess connectivity; check it
3. Application errors are shown, never papered over by a fallback
4. Every data-source decision is logged
5. Money math is pure and backend-independent
"""

__version__ = "1.0.0"
__author__ = "MessMate Team"
