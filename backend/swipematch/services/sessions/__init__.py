"""Session domain services: lifecycle, rounds, consensus and final voting.

This package holds the session engine proper and is imported by HTTP routes
and the CLI, keeping transport concerns separated from the matching rules.
"""
