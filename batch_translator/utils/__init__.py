"""
Utilities for the command-line front end: console logging and file I/O.
"""
