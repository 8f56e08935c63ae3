"""
storybook-eyes Test Suite
=========================

Test Structure:
- /unit/: Unit tests for individual modules
- /integration/: Whole runs with fake browsers, the CLI

Test Execution:
```bash
# Run all tests
pytest

# Run specific test categories
pytest -m unit
pytest -m integration
```
"""
