"""Reconciliation of a local RPM mirror against its package manifests.

Submodules are imported directly (``src.sync.reconcile``,
``src.sync.state``, ...); the scanner package depends on the record type
defined here, so this package does not import its submodules eagerly.
"""
