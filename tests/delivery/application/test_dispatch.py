"""Application tests for the sync-with-provider job and the persistence jobs, run through the Celery tasks."""

from dataclasses import replace

from delivery.errors import AuthenticationError, TransportError
from delivery.jobs.dead_letter import list_dead_letters
from delivery.jobs.dispatch import MANUAL_VERIFICATION
from delivery.jobs.job import JobState, Skipped
from delivery.jobs.orchestrator import JobOrchestrator
from delivery.jobs.policy import JobType
from delivery.jobs.tasks import run_async
from delivery.order.queries import load_order
from delivery.order.registration import Registration
from delivery.order.status import SyncStatus
from delivery.provider.fake_adapter import FakeProvider
from delivery.provider.port import ParcelResult

TENANT = "tenant-1"


def _dispatch(orchestrator, order):
    return orchestrator.dispatch(str(order.id), TENANT, order.provider_slug)


class TestSuccessfulDispatch:
    def test_order_is_synced(self, orchestrator, fake_configured, fake_provider, confirmed_order):
        order = confirmed_order()
        job = _dispatch(orchestrator, order)

        saved = load_order(order.id)
        assert job.state == JobState.COMPLETED
        assert saved.sync_status == SyncStatus.SYNCED.value
        assert saved.tracking_number == fake_provider.parcels[order.order_number]
        assert saved.sync_attempts == 1

    def test_transient_failures_are_retried(self, orchestrator, fake_configured, fake_provider, confirmed_order):
        fake_provider.script_create(
            TransportError("Timed out", provider="fake", ambiguous=True),
            TransportError("Timed out", provider="fake", ambiguous=True),
            "X123",
        )
        order = confirmed_order()
        job = _dispatch(orchestrator, order)

        saved = load_order(order.id)
        assert job.state == JobState.COMPLETED
        assert job.attempts == 3
        assert saved.sync_status == SyncStatus.SYNCED.value
        assert saved.tracking_number == "X123"
        assert saved.sync_attempts == 3
        assert saved.sync_error is None

    def test_failure_between_retries_keeps_sync_pending(
        self, settings, registry, job_store, queued, fake_configured, fake_provider, confirmed_order
    ):
        fake_provider.script_create(TransportError("Connection refused", provider="fake"))
        patient = JobOrchestrator(settings=replace(settings, job_backoff_delay=10), registry=registry, store=job_store)
        order = confirmed_order()
        job = patient.dispatch(str(order.id), TENANT)

        step = run_async(patient.execute(job.id))

        saved = load_order(order.id)
        assert step.job.state == JobState.DELAYED
        assert step.retry_in == 10
        assert saved.sync_status == SyncStatus.PENDING.value
        assert saved.sync_error == "Connection refused"
        assert saved.sync_attempts == 1
        assert patient.get_queue_stats()["sync-with-provider"]["waiting"] == 1

    def test_double_submission_creates_one_parcel(
        self, orchestrator, queued, run_job, fake_configured, fake_provider, confirmed_order
    ):
        order = confirmed_order()
        first = orchestrator.dispatch(str(order.id), TENANT)
        second = orchestrator.dispatch(str(order.id), TENANT)
        assert first.id == second.id
        assert run_job(first).state == JobState.COMPLETED

        again = run_job(orchestrator.dispatch(str(order.id), TENANT))

        assert again.id != first.id
        assert isinstance(again.result, Skipped)
        assert len(fake_provider.create_calls) == 1

    def test_unconfirmed_order_is_skipped(self, orchestrator, fake_configured, fake_provider, register):
        order = load_order(register().order_id)
        job = _dispatch(orchestrator, order)

        assert job.state == JobState.COMPLETED
        assert isinstance(job.result, Skipped)
        assert fake_provider.create_calls == []
        assert load_order(order.id).sync_status == SyncStatus.PENDING.value


class TestFailedDispatch:
    def test_rejection_is_terminal(self, orchestrator, fake_configured, fake_provider, confirmed_order):
        fake_provider.script_create(ParcelResult(success=False, error="Invalid city"))
        order = confirmed_order()
        job = _dispatch(orchestrator, order)

        saved = load_order(order.id)
        assert job.state == JobState.FAILED
        assert job.attempts == 1
        assert len(fake_provider.create_calls) == 1
        assert saved.sync_status == SyncStatus.FAILED.value
        assert saved.sync_error == "Invalid city"

    def test_exhausted_retries_fail_the_order(self, orchestrator, fake_configured, fake_provider, confirmed_order):
        fake_provider.script_create(*[TransportError("Timed out", provider="fake") for _ in range(3)])
        order = confirmed_order()
        job = _dispatch(orchestrator, order)

        saved = load_order(order.id)
        assert job.state == JobState.FAILED
        assert job.attempts == 3
        assert saved.sync_status == SyncStatus.FAILED.value
        assert saved.sync_attempts == 3
        assert saved.sync_error == "Timed out"

        [letter] = list_dead_letters(JobType.SYNC_WITH_PROVIDER, TENANT)
        assert letter.order_id == str(order.id)
        assert letter.attempts == 3
        assert letter.error_kind == "TransportError"

    def test_unconfigured_provider(self, orchestrator, fake_provider, confirmed_order):
        order = confirmed_order()
        job = _dispatch(orchestrator, order)

        saved = load_order(order.id)
        assert job.state == JobState.FAILED
        assert job.attempts == 1
        assert fake_provider.create_calls == []
        assert saved.sync_status == SyncStatus.FAILED.value
        assert saved.sync_attempts == 0

    def test_ambiguous_failure_on_non_idempotent_provider_needs_an_operator(
        self, orchestrator, fake_configured, confirmed_order
    ):
        provider = FakeProvider(idempotent=False)
        provider.script_create(TransportError("Read timed out", provider="fake", ambiguous=True))
        fake_configured.register_factory("fake", lambda config: provider)
        order = confirmed_order()

        job = _dispatch(orchestrator, order)

        saved = load_order(order.id)
        assert job.state == JobState.FAILED
        assert len(provider.create_calls) == 1
        assert saved.sync_status == SyncStatus.FAILED.value
        assert saved.last_sync_ambiguous
        assert MANUAL_VERIFICATION in saved.sync_error

    def test_refused_credentials_evict_the_cached_adapter(
        self, orchestrator, fake_configured, fake_provider, confirmed_order
    ):
        fake_provider.script_create(AuthenticationError("Invalid API key", provider="fake"))
        order = confirmed_order()

        job = _dispatch(orchestrator, order)

        assert job.state == JobState.FAILED
        assert not fake_configured.is_cached(TENANT, "fake")
        assert fake_configured.retired == 0
        assert load_order(order.id).sync_error == "Invalid API key"

    def test_failed_order_is_not_dispatched_again(self, orchestrator, fake_configured, fake_provider, confirmed_order):
        fake_provider.script_create(ParcelResult(success=False, error="Invalid city"))
        order = confirmed_order()
        _dispatch(orchestrator, order)

        again = _dispatch(orchestrator, order)

        assert isinstance(again.result, Skipped)
        assert len(fake_provider.create_calls) == 1


class TestPendingDispatches:
    def test_confirmed_orders_are_enqueued(self, orchestrator, fake_configured, fake_provider, confirmed_order, register):
        first = confirmed_order()
        second = confirmed_order(customer_phone="0699999999")
        register(customer_phone="0655555555")

        jobs = orchestrator.enqueue_pending_dispatches(TENANT)

        assert len(jobs) == 2
        assert all(job.state == JobState.COMPLETED for job in jobs)
        assert load_order(first.id).is_synced
        assert load_order(second.id).is_synced
        assert len(fake_provider.create_calls) == 2


class TestPersistenceJobs:
    def test_create_order_job(self, orchestrator):
        job = orchestrator.register_order(
            {
                "tenant_id": TENANT,
                "customer_phone": "0612345678",
                "customer_name": "Amina Alaoui",
                "provider_slug": "fake",
                "items": [{"product_name": "Argan Oil 100ml", "sku": "ARG-100", "quantity": 1}],
            }
        )

        assert job.state == JobState.COMPLETED
        assert isinstance(job.result, Registration)
        assert load_order(job.result.order_id).customer_name == "Amina Alaoui"

    def test_invalid_order_is_dead_lettered(self, orchestrator):
        job = orchestrator.register_order({"tenant_id": TENANT, "customer_phone": "0612345678", "items": []})

        assert job.state == JobState.FAILED
        assert job.attempts == 1
        assert list_dead_letters(JobType.CREATE_ORDER)[0].job_id == job.id

    def test_update_order_job(self, orchestrator, register):
        order_id = register().order_id
        job = orchestrator.update_order(order_id, TENANT, {"city": "Rabat"})

        assert job.state == JobState.COMPLETED
        assert load_order(order_id).city == "Rabat"

    def test_update_of_unknown_order_fails(self, orchestrator):
        job = orchestrator.update_order("missing", TENANT, {"city": "Rabat"})
        assert job.state == JobState.FAILED
        assert job.attempts == 1


class TestQueueStats:
    def test_stats_per_job_type(self, orchestrator, fake_configured, confirmed_order):
        _dispatch(orchestrator, confirmed_order())

        stats = orchestrator.get_queue_stats()

        assert set(stats) == {job_type.value for job_type in JobType}
        assert stats["sync-with-provider"] == {"waiting": 0, "active": 0, "completed": 1, "failed": 0}
        assert stats["check-status"] == {"waiting": 0, "active": 0, "completed": 0, "failed": 0}

    def test_cancel_waiting_job(self, orchestrator, queued, run_job, fake_configured, fake_provider, confirmed_order):
        job = orchestrator.dispatch(str(confirmed_order().id), TENANT, delay=10)
        assert job.state == JobState.DELAYED

        assert orchestrator.cancel(job.id)
        assert orchestrator.get_job(job.id).state == JobState.CANCELLED
        assert not orchestrator.cancel(job.id)

        assert run_job(job).state == JobState.CANCELLED
        assert fake_provider.create_calls == []
        assert orchestrator.get_queue_stats()["sync-with-provider"]["waiting"] == 0
