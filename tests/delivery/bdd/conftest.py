"""Shared BDD fixtures and step definitions for delivery sync."""

import asyncio

import pytest
from protean import current_domain
from pytest_bdd import given, parsers, then

from delivery.jobs.leases import OrderLeases
from delivery.jobs.reconciler import StatusReconciler
from delivery.jobs.status import StatusChecker
from delivery.order.queries import find_pending_status_updates, load_order
from delivery.order.sync import RecordParcelCreated


@pytest.fixture()
def run_reconciler(registry):
    def _run():
        reconciler = StatusReconciler(StatusChecker(registry), OrderLeases(), pause=0)
        return asyncio.run(reconciler.run())

    return _run


# ---------------------------------------------------------------------------
# Given steps
# ---------------------------------------------------------------------------
@given("the tenant has the fake provider configured")
def _(fake_configured):
    pass


@given("a confirmed order for the fake provider", target_fixture="order")
def _(confirmed_order):
    return confirmed_order(provider_slug="fake")


@given(parsers.cfparse('the order was dispatched with tracking number "{tracking_number}"'), target_fixture="order")
def _(order, tracking_number):
    current_domain.process(
        RecordParcelCreated(
            order_id=str(order.id),
            tenant_id=str(order.tenant_id),
            provider=order.provider_slug,
            tracking_number=tracking_number,
        ),
        asynchronous=False,
    )
    return load_order(order.id)


# ---------------------------------------------------------------------------
# Then steps
# ---------------------------------------------------------------------------
@then(parsers.cfparse('the order status is "{status}"'))
def _(order, status):
    assert load_order(order.id).status == status


@then(parsers.cfparse('the order sync status is "{sync_status}"'))
def _(order, sync_status):
    assert load_order(order.id).sync_status == sync_status


@then(parsers.cfparse('the order tracking number is "{tracking_number}"'))
def _(order, tracking_number):
    assert load_order(order.id).tracking_number == tracking_number


@then(parsers.cfparse('the last history entry records provider status "{provider_status}"'))
def _(order, provider_status):
    assert load_order(order.id).history()[-1].provider_status == provider_status


@then("the order is no longer polled")
def _(order):
    assert str(order.id) not in [str(pending.id) for pending in find_pending_status_updates()]
