"""
HisabKitab - Source Package

Personal expense tracking with a cash-balance wallet.
All persistence and identity are delegated to a remote backend;
this package is the data-access and domain layer a UI talks to.

DESIGN PRINCIPLES:
1. Every read and write is scoped to one user
2. Expense + wallet changes commit together or not at all
3. Failures surface as typed errors, never silent
4. Storage backend is swappable
"""

__version__ = "1.0.0"
__author__ = "HisabKitab Team"
