"""
Integration Tests Package

Runs the coordinator end to end against the in-memory host.

TEST AXIOMS:
=============
1. Failures are result records, never exceptions at the boundary
2. The document graph is the only persistent state
3. One failing source or item never blocks the others
"""
