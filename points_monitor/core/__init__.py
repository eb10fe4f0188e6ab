"""
Core modules for Points Monitor.

Billing cycle arithmetic, history synchronization, aggregation, balance
projection and the auto sync scheduler.
"""
