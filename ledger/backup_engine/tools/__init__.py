"""
Command line tools for the ledger backup engine.
"""
