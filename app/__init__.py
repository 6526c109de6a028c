"""
HTTP API for the merchant store and categorization runs.
"""
