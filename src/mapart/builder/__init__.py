"""Builder runtime: placement engine, restocker, worker state machine and pool."""
