"""Durable work-distribution ledger shared by all builder workers.

The ledger is the single arbiter of band ownership. Workers never hold
locks beyond the ``bands.assigned_to`` column: a claim is a conditional
``UPDATE ... WHERE status = 'pending'`` followed by a re-read, and SQLite's
single-writer rule (WAL journal + busy timeout) serializes concurrent
claimers across processes.
"""
