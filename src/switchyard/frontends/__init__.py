"""Frontends - User interfaces for switchyard.

Frontends consume the core through its public API (Pipeline, NodeGraph,
StateManager) and know nothing about its internals.

Submodules:
    cli/    Command-line interface
"""
