"""
Integration Tests
=================

Integration tests for storybook-eyes runs.
Real subprocesses, real script host, fake browser sessions.
"""
