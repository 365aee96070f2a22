# custom_components/testicool/__init__.py
"""Testicool cooling pump control."""
