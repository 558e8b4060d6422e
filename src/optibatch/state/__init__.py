"""State/store layer.

This package is the single source of truth for how submitted updates are
filtered, coalesced into the pending set, overlaid by in-flight batches and
projected into the current view.
"""
