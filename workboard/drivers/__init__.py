"""Drivers for kernel infrastructure ports."""
