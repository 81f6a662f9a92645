"""
Checkout: browse-time quotes and the commit-time orchestrator.
"""
