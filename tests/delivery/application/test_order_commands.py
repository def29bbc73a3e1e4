"""Application tests for order update, confirmation, cancellation and dispatch outcome commands."""

import json

import pytest
from protean import current_domain
from protean.exceptions import ObjectNotFoundError, ValidationError

from delivery.order.cancellation import CancelOrder, RefundOrder
from delivery.order.confirmation import RecordConfirmation
from delivery.order.queries import find_by_tracking_number, find_pending_sync, load_order
from delivery.order.status import ConfirmationStatus, OrderStatus, SyncStatus
from delivery.order.sync import MarkSyncFailed, RecordParcelCreated, RecordSyncFailure
from delivery.order.tracking import RecordProviderStatus
from delivery.order.update import UpdateOrder

TENANT = "tenant-1"


def _record_parcel(order_id, tracking_number="X123"):
    return current_domain.process(
        RecordParcelCreated(order_id=order_id, tenant_id=TENANT, provider="fake", tracking_number=tracking_number),
        asynchronous=False,
    )


class TestUpdateOrder:
    def test_patch_is_applied(self, register):
        order_id = register().order_id
        current_domain.process(
            UpdateOrder(order_id=order_id, tenant_id=TENANT, patch=json.dumps({"city": "Rabat"})),
            asynchronous=False,
        )
        assert load_order(order_id).city == "Rabat"

    def test_unknown_field_is_refused(self, register):
        order_id = register().order_id
        with pytest.raises(ValidationError):
            current_domain.process(
                UpdateOrder(order_id=order_id, tenant_id=TENANT, patch=json.dumps({"status": "delivered"})),
                asynchronous=False,
            )

    def test_other_tenant_cannot_update(self, register):
        order_id = register().order_id
        with pytest.raises(ObjectNotFoundError):
            current_domain.process(
                UpdateOrder(order_id=order_id, tenant_id="tenant-2", patch=json.dumps({"city": "Rabat"})),
                asynchronous=False,
            )


class TestConfirmation:
    def test_confirmed_order_waits_for_dispatch(self, confirmed_order):
        order = confirmed_order()
        assert order.confirmation_status == ConfirmationStatus.CONFIRMED.value
        assert [pending.id for pending in find_pending_sync(TENANT)] == [order.id]

    def test_unconfirmed_orders_are_not_pending_sync(self, register):
        order_id = register().order_id
        current_domain.process(
            RecordConfirmation(order_id=order_id, tenant_id=TENANT, confirmation_status="no_response"),
            asynchronous=False,
        )
        assert find_pending_sync(TENANT) == []


class TestCancellation:
    def test_cancel_and_refund(self, confirmed_order):
        order = confirmed_order()
        current_domain.process(
            CancelOrder(order_id=order.id, tenant_id=TENANT, reason="Customer changed mind"),
            asynchronous=False,
        )
        current_domain.process(RefundOrder(order_id=order.id, tenant_id=TENANT), asynchronous=False)
        assert load_order(order.id).status == OrderStatus.REFUNDED.value

    def test_cancelled_orders_are_not_pending_sync(self, confirmed_order):
        order = confirmed_order()
        current_domain.process(
            CancelOrder(order_id=order.id, tenant_id=TENANT, reason="Out of stock"),
            asynchronous=False,
        )
        assert find_pending_sync(TENANT) == []


class TestDispatchOutcomes:
    def test_parcel_created_is_persisted(self, confirmed_order):
        order = confirmed_order()
        assert _record_parcel(order.id) is True
        saved = load_order(order.id)
        assert saved.tracking_number == "X123"
        assert saved.sync_status == SyncStatus.SYNCED.value

    def test_repeated_parcel_created_is_ignored(self, confirmed_order):
        order = confirmed_order()
        _record_parcel(order.id)
        assert _record_parcel(order.id) is False
        assert load_order(order.id).sync_attempts == 1

    def test_tracking_number_lookup(self, confirmed_order):
        order = confirmed_order()
        _record_parcel(order.id, "X999")
        assert find_by_tracking_number(TENANT, "fake", "X999").id == order.id
        with pytest.raises(ObjectNotFoundError):
            find_by_tracking_number("tenant-2", "fake", "X999")

    def test_sync_failure_then_exhaustion(self, confirmed_order):
        order = confirmed_order()
        current_domain.process(
            RecordSyncFailure(order_id=order.id, tenant_id=TENANT, provider="fake", error="Timed out"),
            asynchronous=False,
        )
        assert load_order(order.id).sync_status == SyncStatus.PENDING.value

        current_domain.process(
            MarkSyncFailed(order_id=order.id, tenant_id=TENANT, provider="fake", error="Timed out"),
            asynchronous=False,
        )
        saved = load_order(order.id)
        assert saved.sync_status == SyncStatus.FAILED.value
        assert saved.sync_error == "Timed out"

    def test_provider_status_is_recorded(self, confirmed_order):
        order = confirmed_order()
        _record_parcel(order.id)
        applied = current_domain.process(
            RecordProviderStatus(
                order_id=order.id,
                tenant_id=TENANT,
                provider="fake",
                provider_status="IN_TRANSIT",
                mapped_status="shipped",
            ),
            asynchronous=False,
        )
        assert applied is True
        assert load_order(order.id).status == OrderStatus.SHIPPED.value


class TestAuditTrail:
    def test_state_transitions_reach_the_audit_sink(self, confirmed_order, audit_sink):
        order = confirmed_order()
        _record_parcel(order.id)

        types = [event["type"] for event in audit_sink.events]
        assert types[:2] == ["OrderRegistered", "ConfirmationRecorded"]
        assert "ParcelCreated" in types
        assert "OrderStatusChanged" in types

    def test_event_payload_carries_identifiers(self, confirmed_order, audit_sink):
        order = confirmed_order()
        _record_parcel(order.id, "X777")
        created = audit_sink.of_type("ParcelCreated")[0]["payload"]
        assert created["order_id"] == str(order.id)
        assert created["tracking_number"] == "X777"
        assert created["attempts"] == 1
