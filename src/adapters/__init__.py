"""Adapters layer for Allergy Ledger.

Adapters implement the Port interfaces defined in the domain layer and
handle the mapping between external systems and domain models.
"""
