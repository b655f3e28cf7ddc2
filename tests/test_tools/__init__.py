"""
Test Tools Package
Tests for the tools module (recurrence, progress, email sender)
"""
