"""
Services module - Application business logic layer.

Modules:
- sync: Token lifecycle, paginated fetching and the activity cache
- analytics: Training load and heart rate zone metrics
- external: External service integrations
"""
