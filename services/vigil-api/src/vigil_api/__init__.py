"""vigil-api: HTTP surface for onboarding progress sessions."""

__version__ = "0.1.0"
