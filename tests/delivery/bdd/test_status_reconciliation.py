"""BDD tests for status reconciliation and webhook pushes."""

import hashlib
import hmac
import json

from protean import current_domain
from pytest_bdd import given, parsers, scenarios, when

from delivery.order.tracking import IngestProviderWebhook

scenarios("features/status_reconciliation.feature")


# ---------------------------------------------------------------------------
# Given steps
# ---------------------------------------------------------------------------
@given(parsers.cfparse('the provider reports "{provider_status}" for "{tracking_number}"'))
def _(fake_provider, provider_status, tracking_number):
    fake_provider.script_status(tracking_number, provider_status)


@given("the status reconciler has run")
def _(run_reconciler):
    run_reconciler()


# ---------------------------------------------------------------------------
# When steps
# ---------------------------------------------------------------------------
@when("the status reconciler runs", target_fixture="report")
def _(run_reconciler):
    return run_reconciler()


@when(parsers.cfparse('the provider pushes "{provider_status}" for "{tracking_number}" by webhook'))
def _(order, provider_status, tracking_number):
    body = json.dumps({"tracking_number": tracking_number, "status": provider_status})
    signature = hmac.new(b"whsec-fake", body.encode(), hashlib.sha256).hexdigest()
    current_domain.process(
        IngestProviderWebhook(
            tenant_id=str(order.tenant_id),
            provider=order.provider_slug,
            body=body,
            signature=signature,
        ),
        asynchronous=False,
    )
