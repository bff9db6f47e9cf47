"""Productflow - Product lifecycle workflow engine.

This package governs how catalog records move through approval states:
who may move them, how every move is audited, how reviewers are selected
and substituted, and how large sets of records are transitioned together
as cancellable bulk campaigns.
"""

__version__ = "0.1.0"
