"""Test suite for RailWatch."""
