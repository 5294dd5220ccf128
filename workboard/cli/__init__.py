"""Workboard command line interface."""
