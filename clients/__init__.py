"""
Clients for external providers.

This package contains:
- base: Resilient HTTP client (budget gate, retries, typed errors)
- ledger: Budgeting ledger API client with hourly request window
- notifier: Telegram run summary notifier
"""
