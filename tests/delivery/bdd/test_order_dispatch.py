"""BDD tests for dispatching orders through the sync-with-provider job."""

from pytest_bdd import given, parsers, scenarios, then, when

from delivery.errors import TransportError
from delivery.jobs.dead_letter import list_dead_letters
from delivery.jobs.job import JobState
from delivery.jobs.policy import JobType
from delivery.order.queries import load_order
from delivery.provider.port import ParcelResult

scenarios("features/order_dispatch.feature")


# ---------------------------------------------------------------------------
# Given steps
# ---------------------------------------------------------------------------
@given(parsers.cfparse('the provider times out {count:d} times before returning tracking number "{tracking_number}"'))
def _(fake_provider, count, tracking_number):
    timeouts = [TransportError("Timed out", provider="fake", ambiguous=True) for _ in range(count)]
    fake_provider.script_create(*timeouts, tracking_number)


@given(parsers.cfparse('the provider rejects the parcel with "{message}"'))
def _(fake_provider, message):
    fake_provider.script_create(ParcelResult(success=False, error=message))


# ---------------------------------------------------------------------------
# When steps
# ---------------------------------------------------------------------------
@when("the order is dispatched", target_fixture="job")
def _(order, orchestrator):
    return orchestrator.dispatch(str(order.id), str(order.tenant_id), order.provider_slug)


# ---------------------------------------------------------------------------
# Then steps
# ---------------------------------------------------------------------------
@then(parsers.re(r"the dispatch job completed after (?P<attempts>\d+) attempts?"))
def _(job, attempts):
    assert job.state == JobState.COMPLETED
    assert job.attempts == int(attempts)


@then(parsers.re(r"the dispatch job failed after (?P<attempts>\d+) attempts?"))
def _(job, attempts):
    assert job.state == JobState.FAILED
    assert job.attempts == int(attempts)


@then(parsers.cfparse("the order recorded {attempts:d} sync attempts"))
def _(order, attempts):
    assert load_order(order.id).sync_attempts == attempts


@then(parsers.cfparse('the order sync error is "{message}"'))
def _(order, message):
    assert load_order(order.id).sync_error == message


@then(parsers.re(r"the provider received (?P<count>\d+) create calls?"))
def _(fake_provider, count):
    assert len(fake_provider.create_calls) == int(count)


@then("the dispatch job was dead-lettered")
def _(job):
    assert [letter.job_id for letter in list_dead_letters(JobType.SYNC_WITH_PROVIDER)] == [job.id]
