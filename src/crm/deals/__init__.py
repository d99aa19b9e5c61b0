"""Deals pipeline -- stage guard, models, schemas, repository and stats.

Provides the DealStatus stage set with its transition guard, the DealModel
table, Pydantic read/write schemas, DealRepository for async CRUD and
aggregates, and the deal-won notifier.
"""
