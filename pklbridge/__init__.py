"""Decode Pkl values into Python objects and manage Pkl evaluators over a supplied backend."""

__version__ = "0.1.0"