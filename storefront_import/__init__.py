"""
storefront_import -- resumable, cancellable order import jobs.

Reconciles a tenant's external store catalog (WooCommerce) against the
local order store in discrete page-sized batches, persisting a checkpoint
after every batch and streaming progress snapshots to observers.

Layout:
    domain/     Pure types, state machine and payload mapping (ZERO I/O).
    models/     ORM persistence for import jobs and record failures.
    services/   Job store, reconciler, batch runner, progress, manager, worker.
    clients/    External order sources (WooCommerce REST) and the registry.
    orchestrator.py  DI container wiring everything together.
"""
