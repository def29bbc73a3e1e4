import json

import pytest
from protean import current_domain
from protean.integrations.pytest import DomainFixture

from delivery.audit import reset_audit_sink, set_audit_sink
from delivery.audit.sink import RecordingAuditSink
from delivery.config import EngineSettings
from delivery.jobs.celery_app import celery
from delivery.jobs.orchestrator import JobOrchestrator, reset_orchestrator, set_orchestrator
from delivery.jobs.store import MemoryJobStore
from delivery.jobs.tasks import TASKS
from delivery.order.confirmation import RecordConfirmation
from delivery.order.queries import load_order
from delivery.order.registration import RegisterOrder
from delivery.provider import reset_registry, set_registry
from delivery.provider.credentials import CredentialCipher
from delivery.provider.fake_adapter import FakeProvider
from delivery.provider.provider_config import configure_provider
from delivery.provider.registry import AdapterRegistry

TENANT = "tenant-1"


@pytest.fixture(scope="session")
def delivery_bed():
    from delivery.domain import delivery

    bed = DomainFixture(delivery)
    bed.setup()
    yield bed
    bed.teardown()


@pytest.fixture(autouse=True)
def _ctx(delivery_bed):
    """Push domain context before each test, cleanup after."""
    with delivery_bed.domain_context():
        yield

        for _, provider in current_domain.providers.items():
            provider._data_reset()
        current_domain.event_store.store._data_reset()


@pytest.fixture(autouse=True)
def audit_sink():
    sink = RecordingAuditSink()
    set_audit_sink(sink)
    yield sink
    reset_audit_sink()


@pytest.fixture()
def settings():
    return EngineSettings(
        job_attempts=3,
        job_backoff_delay=0.01,
        status_batch_size=10,
        status_batch_pause=0.05,
        credentials_key=CredentialCipher.generate_key(),
    )


@pytest.fixture()
def fake_provider():
    return FakeProvider()


@pytest.fixture(autouse=True)
def registry(settings, fake_provider):
    """Process-wide registry whose ``fake`` slug always resolves to ``fake_provider``."""
    registry = AdapterRegistry(settings=settings)
    registry.register_factory("fake", lambda config: fake_provider)
    set_registry(registry)
    yield registry
    reset_registry()


@pytest.fixture()
def fake_configured(registry):
    configure_provider(
        TENANT,
        "fake",
        "https://fake.example.test",
        {"api_key": "fake-key", "webhook_secret": "whsec-fake"},
    )
    return registry


@pytest.fixture()
def register():
    """Register an order through the create-order command and return the Registration."""

    def _register(tenant_id=TENANT, customer_phone="0612345678", items=None, provider_slug="fake", **details):
        details.setdefault("customer_name", "Amina Alaoui")
        details.setdefault("city", "Casablanca")
        details.setdefault("address", "12 Rue Ibn Batouta")
        details.setdefault("total_amount", 249.0)
        items = items or [{"product_name": "Argan Oil 100ml", "sku": "ARG-100", "quantity": 1, "unit_price": 249.0}]
        return current_domain.process(
            RegisterOrder(
                tenant_id=tenant_id,
                customer_phone=customer_phone,
                items=json.dumps(items),
                provider_slug=provider_slug,
                **details,
            ),
            asynchronous=False,
        )

    return _register


@pytest.fixture()
def confirmed_order(register):
    """Register and confirm an order; returns the persisted Order."""

    def _confirmed(tenant_id=TENANT, **kwargs):
        registration = register(tenant_id=tenant_id, **kwargs)
        current_domain.process(
            RecordConfirmation(
                order_id=registration.order_id,
                tenant_id=tenant_id,
                confirmation_status="confirmed",
            ),
            asynchronous=False,
        )
        return load_order(registration.order_id)

    return _confirmed


@pytest.fixture()
def job_store():
    return MemoryJobStore()


@pytest.fixture()
def orchestrator(settings, registry, job_store):
    """Process-wide orchestrator; with Celery eager, a submitted job has run by the time submit returns."""
    orchestrator = JobOrchestrator(settings=settings, registry=registry, store=job_store)
    set_orchestrator(orchestrator)
    yield orchestrator
    reset_orchestrator()


@pytest.fixture()
def queued():
    """Publish submitted jobs to the in-memory broker instead of running them."""
    celery.conf.task_always_eager = False
    yield
    celery.conf.task_always_eager = True


@pytest.fixture()
def run_job(orchestrator):
    """Deliver a job's task once in this process and return the updated job."""

    def _run(job):
        TASKS[job.type].apply(args=(job.id,), task_id=job.id)
        return orchestrator.get_job(job.id)

    return _run
