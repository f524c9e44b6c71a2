"""Subscription billing services."""
