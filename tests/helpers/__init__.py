"""Shared test doubles for queue tests."""
