"""
Service layer for business logic.

This package contains the categorization decision policy, the daily
run orchestrator and the wiring that builds them from settings.
"""
