"""
Gossip Couple - Source Package

A shared finance companion for couples: transactions, savings goals,
tasks, a shared calendar and a portfolio tracker, kept in sync in real
time and driven by a conversational assistant that can act on the data.

DESIGN PRINCIPLES:
1. The backend is the source of truth; the client only projects it
2. The assistant reads a snapshot and acts through callbacks, never directly
3. Multi-step writes are explicit sagas with named, retryable steps
4. Integrations degrade to a manual fallback instead of crashing
5. Every significant action is auditable
"""

__version__ = "1.0.0"
__author__ = "Gossip Couple Team"
