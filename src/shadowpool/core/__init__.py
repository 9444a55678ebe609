"""Accounting core: accumulator, root history, nullifiers, pools and flows."""
