"""Placement pipeline engine: hiring-stage state machine and its sub-workflows."""

__version__ = "0.1.0"
