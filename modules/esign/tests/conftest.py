"""
Conftest for E-Sign Module Tests.

Provides in-memory stores, handlers and seeded agreements.
"""

import pytest

from core.context import Scope

PUBLIC_BASE_URL = "https://sign.example.test"


# =============================================================================
# Email provider doubles
# =============================================================================


class FlakyEmailProvider:
    """Fails the first ``failures`` sends, then delegates to the deterministic provider."""

    name = "flaky"

    def __init__(self, failures: int = 1, observer=None):
        from modules.esign.jobs.providers import DeterministicEmailProvider

        self._inner = DeterministicEmailProvider(observer=observer)
        self.failures = failures
        self.calls = 0

    async def send(self, data):
        from modules.esign.jobs.smtp_provider import EmailSendError

        self.calls += 1
        if self.calls <= self.failures:
            raise EmailSendError("smtp send failed: 451 try again later")
        return await self._inner.send(data)


# =============================================================================
# Store & service fixtures
# =============================================================================


@pytest.fixture
def scope():
    return Scope("t1", "o1")


@pytest.fixture
def store():
    """Empty in-memory E-Sign store."""
    from modules.esign.stores.memory import InMemoryStore

    return InMemoryStore()


@pytest.fixture
def metrics():
    """Isolated metrics instance."""
    from modules.esign.observability.metrics import InMemoryMetrics

    return InMemoryMetrics()


@pytest.fixture
def link_observer():
    from modules.esign.jobs.providers import CapturingLinkObserver

    return CapturingLinkObserver()


@pytest.fixture
def agreement_service(store):
    from modules.esign.services.agreements import AgreementService

    return AgreementService(store, audits=store)


@pytest.fixture
def token_service(store, metrics):
    from modules.esign.services.tokens import TokenService

    return TokenService(store, metrics=metrics)


@pytest.fixture
def pipeline(store):
    from modules.esign.services.artifacts import DeterministicArtifactPipeline

    return DeterministicArtifactPipeline(store, store)


@pytest.fixture
def make_handlers(store, metrics, link_observer, token_service, pipeline):
    """Factory for JobHandlers over the in-memory store; keyword overrides replace dependencies."""
    from modules.esign.jobs.handlers import HandlerDependencies, JobHandlers
    from modules.esign.jobs.providers import DeterministicEmailProvider

    def _make(**overrides) -> JobHandlers:
        deps = dict(
            agreements=store,
            job_runs=store,
            email_logs=store,
            audits=store,
            tokens=token_service,
            pipeline=pipeline,
            email_provider=DeterministicEmailProvider(observer=link_observer),
            metrics=metrics,
            public_base_url=PUBLIC_BASE_URL,
        )
        deps.update(overrides)
        return JobHandlers(HandlerDependencies(**deps))

    return _make


@pytest.fixture
def handlers(make_handlers):
    return make_handlers()


# =============================================================================
# Seeded agreements
# =============================================================================


@pytest.fixture
def make_agreement(agreement_service, scope):
    """
    Create an agreement with one signer and one CC.

    Returns (agreement, signer, cc); ``status`` of "sent" or "completed"
    moves the agreement through the lifecycle.
    """

    async def _make(title: str = "Mutual NDA", status: str = "draft"):
        from modules.esign.models.records import RecipientRole

        agreement = await agreement_service.create_draft(scope, title, document_id="doc-1", created_by_user_id="u1")
        signer = await agreement_service.add_recipient(
            scope, agreement.id, "signer@example.com", name="Sam Signer", signing_order=1
        )
        cc = await agreement_service.add_recipient(
            scope, agreement.id, "cc@example.com", name="Casey Copy", role=RecipientRole.CC, signing_order=2
        )
        if status in ("sent", "completed"):
            agreement = await agreement_service.send(scope, agreement.id, actor_id="u1")
        if status == "completed":
            agreement = await agreement_service.complete(scope, agreement.id, actor_id="u1")
        return agreement, signer, cc

    return _make


@pytest.fixture
def flaky_provider_factory(link_observer):
    def _make(failures: int = 1) -> FlakyEmailProvider:
        return FlakyEmailProvider(failures=failures, observer=link_observer)

    return _make
