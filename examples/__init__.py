"""Example scripts for Gadget Mirror.

Available examples:

basic_usage.py
    One-way additive passes against temporary directories: stability
    window, host rewrites, failure alarm. No mounts or root needed.

Run:
    python examples/basic_usage.py
"""
