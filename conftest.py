"""
Pytest root configuration.

Its presence puts the repository root on sys.path so that test modules
can import the shared fixtures as ``tests.fixtures``.
"""
