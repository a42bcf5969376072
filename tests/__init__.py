"""
Tests package - test suite for the admission webhook server.

Contains:
- unit/: Unit tests for individual components
"""
