"""
Configuration, ORM models and database wiring for the practice monitor.
"""
