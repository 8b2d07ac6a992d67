"""
Reconciler -- decides create / update / skip / fail for one external order.

Contract:
    ``reconcile()`` maps the payload, looks the order up by
    (tenant_id, external_id) and writes through ``LocalOrderStore``.
    It never calls the external source and never commits.

Invariants enforced:
    - A mapping failure writes nothing and yields ``failed(reason)``.
    - Created and updated orders are linked to a tenant customer, matched
      by email then phone, or created.
    - With the skip policy an existing order is never written.
    - With the update policy only externally owned fields change;
      internal notes and existing status history are kept, and one
      history row is appended only when the local or external status
      changed.

Failure modes:
    - Store errors (IntegrityError, OperationalError, ...) propagate.  The
      batch runner rolls back the record's SAVEPOINT and counts it failed.
"""

from __future__ import annotations

from typing import Any
from uuid import UUID

from storefront_kernel.exceptions import OrderMappingError
from storefront_kernel.logging_config import get_logger
from storefront_kernel.services.order_store import LocalOrderStore

from storefront_import.domain.mapping import map_external_order
from storefront_import.domain.types import (
    DuplicatePolicy,
    ImportOptions,
    ReconciliationOutcome,
)

logger = get_logger("import.reconciler")

IMPORTED_REASON = "Imported from WooCommerce"
SYNCED_REASON = "Synced from WooCommerce"
DUPLICATE_REASON = "duplicate"


class Reconciler:
    """Reconciles external order payloads into the local order store."""

    def __init__(
        self,
        order_store: LocalOrderStore,
        actor_id: UUID,
        default_currency: str = "EGP",
    ):
        self._orders = order_store
        self._actor_id = actor_id
        self._default_currency = default_currency

    def reconcile(
        self, tenant_id: str, payload: Any, options: ImportOptions,
    ) -> ReconciliationOutcome:
        try:
            draft = map_external_order(
                payload,
                status_mapping=options.status_mapping,
                default_currency=self._default_currency,
            )
        except OrderMappingError as exc:
            logger.warning(
                "import_record_invalid",
                extra={"external_id": exc.external_id, "field": exc.field, "reason": exc.reason},
            )
            return ReconciliationOutcome.failed(exc.external_id, str(exc), reason_code=exc.code)

        changed_by = "user" if options.triggered_by == "user" else "system"
        existing = self._orders.find_by_external_id(tenant_id, draft.external_id)

        if existing is None:
            customer = self._orders.find_or_create_customer(tenant_id, draft, self._actor_id)
            created = self._orders.create(
                tenant_id,
                draft,
                actor_id=self._actor_id,
                changed_by=changed_by,
                reason=IMPORTED_REASON,
                customer_id=customer.id,
            )
            return ReconciliationOutcome.created(draft.external_id, created.id)

        if options.duplicate_policy is DuplicatePolicy.SKIP:
            return ReconciliationOutcome.skipped(draft.external_id, DUPLICATE_REASON, existing.id)

        status_changed = (
            existing.status != draft.status
            or existing.external_status != draft.external_status
        )
        customer = self._orders.find_or_create_customer(tenant_id, draft, self._actor_id)
        self._orders.update(
            existing.id, draft.mutable_fields(), actor_id=self._actor_id, customer_id=customer.id,
        )
        if status_changed:
            self._orders.record_status_change(
                existing.id,
                status=draft.status,
                old_status=existing.status,
                actor_id=self._actor_id,
                changed_by=changed_by,
                reason=SYNCED_REASON,
            )
        return ReconciliationOutcome.updated(draft.external_id, existing.id)
