"""
storybook-eyes
Visual regression testing for Storybook component catalogs
"""

__version__ = "0.4.0"
