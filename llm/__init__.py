"""
Classifier integration for transaction categorization.

This package contains:
- classify: Strict reply parsing and the Classifier callable
- client: Messages API client
- prompts: Categorization prompt builder
"""
