"""Onboarding-progress widget backend."""

__version__ = "0.1.0"
