# This file makes the 'utils' directory within 'tests' a Python package.
