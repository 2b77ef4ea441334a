"""Board core: model, position engine, view projection, and file-backed store.

The ordering and filter modules are pure; the store and engine own the
durable copy of the board that clients synchronise against.
"""
