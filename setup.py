"""
Kept for compatibility with tooling that still invokes setup.py directly.

All package configuration lives in pyproject.toml (PEP 621).
"""

from setuptools import setup

setup()
