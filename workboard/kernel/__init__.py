"""Workboard kernel: domain model, ports, machines, config and logging."""
