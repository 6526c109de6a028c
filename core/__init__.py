"""
Core modules for merchant-learning transaction categorization.

This package contains:
- config: Application configuration and settings
- confidence: Merchant name normalization and confidence learning rules
- db: SQLite merchant confidence store
- exceptions: Custom exception classes
- logger: Logging configuration
- schema: Pydantic models for data validation
- usage: Per-provider usage budgets
"""
