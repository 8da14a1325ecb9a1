"""
residentml UI runtime: hydration of template islands.
"""
