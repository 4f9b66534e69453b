"""Test suite for the lab results engine."""
