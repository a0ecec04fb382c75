"""vigil-cli: command-line observer for onboarding progress."""

__version__ = "0.1.0"
