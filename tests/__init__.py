"""Test suite for vigil."""
