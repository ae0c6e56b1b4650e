"""Ports between the core and its external collaborators."""
