"""
Unit Tests
==========

Unit tests for individual storybook-eyes components.

Coverage areas:
- Configuration management
- Bundle retrieval and story extraction
- Dev server lifecycle and shutdown handling
- Lane scheduling and the local diff engine
"""
