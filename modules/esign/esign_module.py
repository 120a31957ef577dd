"""
E-Sign Module Entry Point.

Implements IAdminModule for the e-signature example application: agreement,
job run, email log and audit event panels, delivery dashboards, the
completion and Google import commands, and the completion sweep job.
"""

import logging
from datetime import datetime
from typing import Any, Callable, Optional

from sqlalchemy.ext.asyncio import AsyncEngine

from core.context import AdminContext
from core.database import create_engine_for, create_session_factory, init_database
from core.descriptors import (
    Action,
    Field,
    Filter,
    MenuItem,
    MenuTarget,
    ModuleManifest,
    Option,
    PanelPermissions,
    WidgetSpec,
)
from core.interface import IAdminModule, ModuleContext
from core.jobs import Job
from core.panel import PanelBuilder
from core.search import RepositorySearchAdapter, SearchResult
from modules.esign.core.config import EsignSettings, get_esign_settings
from modules.esign.jobs.commands import CompleteAgreementCommand, GoogleImportCommand, sweep_completed_agreements
from modules.esign.jobs.handlers import HandlerDependencies, JobHandlers
from modules.esign.jobs.providers import EmailProvider, NoopLinkObserver, RecipientLinkObserver
from modules.esign.jobs.queue import AsyncJobQueue
from modules.esign.jobs.retry import RetryPolicy
from modules.esign.jobs.smtp_provider import email_provider_from_settings
from modules.esign.models.records import AgreementStatus, EmailLogStatus, JobRunStatus
from modules.esign.observability.metrics import InMemoryMetrics, get_metrics
from modules.esign.services.agreements import AgreementService
from modules.esign.services.artifacts import DeterministicArtifactPipeline, InMemoryObjectStore
from modules.esign.services.google import (
    GoogleCredentialStore,
    GoogleDriveClient,
    GoogleImportService,
    HttpGoogleDriveClient,
)
from modules.esign.services.panel_repositories import (
    AgreementRepository,
    AuditEventRepository,
    StoreRecordRepository,
)
from modules.esign.services.tokens import TokenService
from modules.esign.stores.memory import InMemoryStore
from modules.esign.stores.sql import SqlJobStore

logger = logging.getLogger(__name__)

MODULE_ID = "esign"


def _options(enum_type: Any) -> tuple[Option, ...]:
    return tuple(Option(value=member.value, label=member.value.replace("_", " ").title()) for member in enum_type)


class EsignModule(IAdminModule):
    """
    E-Sign example module.

    Collaborators default to in-process implementations; a SQL job store is
    used for job runs, email logs and audit events when ESIGN_DATABASE_URL
    is set.

    Args:
        settings: Module settings (environment by default).
        store: Domain store for agreements, documents, tokens and artifacts.
        email_provider: Overrides the provider selected by ESIGN_EMAIL_TRANSPORT.
        drive_client: Overrides the Google Drive HTTP client.
        link_observer: Receives the links handed to the deterministic provider.
        metrics: Counter sink.
        now: Clock used by the orchestrator and services.
    """

    def __init__(
        self,
        settings: Optional[EsignSettings] = None,
        store: Optional[InMemoryStore] = None,
        email_provider: Optional[EmailProvider] = None,
        drive_client: Optional[GoogleDriveClient] = None,
        link_observer: Optional[RecipientLinkObserver] = None,
        metrics: Optional[InMemoryMetrics] = None,
        now: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._settings = settings or get_esign_settings()
        self._store = store or InMemoryStore()
        self._metrics = metrics or get_metrics()
        self._link_observer = link_observer or NoopLinkObserver()
        self._base_path = "/admin"

        self._engine: Optional[AsyncEngine] = None
        job_store: Any = self._store
        if self._settings.database_url:
            self._engine = create_engine_for(self._settings.database_url)
            job_store = SqlJobStore(create_session_factory(self._engine))
        self._job_store = job_store

        self._objects = InMemoryObjectStore()
        self._credentials = GoogleCredentialStore()
        self._agreements = AgreementService(self._store, audits=job_store, now=now)
        self._tokens = TokenService(
            self._store,
            ttl_hours=self._settings.token_ttl_hours,
            metrics=self._metrics,
            now=now,
        )
        self._pipeline = DeterministicArtifactPipeline(self._store, self._store, self._objects)
        self._importer = GoogleImportService(
            client=drive_client or HttpGoogleDriveClient(self._settings.google_api_base_url),
            credentials=self._credentials,
            documents=self._store,
            agreements=self._store,
            objects=self._objects,
            metrics=self._metrics,
        )
        self._handlers = JobHandlers(HandlerDependencies(
            agreements=self._store,
            job_runs=job_store,
            email_logs=job_store,
            audits=job_store,
            tokens=self._tokens,
            pipeline=self._pipeline,
            email_provider=email_provider or email_provider_from_settings(self._settings, self._link_observer),
            google_importer=self._importer,
            retry_policy=RetryPolicy(
                base_delay_seconds=self._settings.retry_base_delay_seconds,
                max_attempts=self._settings.retry_max_attempts,
            ),
            metrics=self._metrics,
            public_base_url=self._settings.normalized_public_base_url,
            now=now,
        ))
        self._queue = AsyncJobQueue(
            self._handlers.dispatch,
            workers=self._settings.import_queue_workers,
            capacity=self._settings.import_queue_capacity,
        )

    # =========================================================================
    # Accessors
    # =========================================================================

    @property
    def store(self) -> InMemoryStore:
        return self._store

    @property
    def job_store(self) -> Any:
        return self._job_store

    @property
    def handlers(self) -> JobHandlers:
        return self._handlers

    @property
    def agreements(self) -> AgreementService:
        return self._agreements

    @property
    def tokens(self) -> TokenService:
        return self._tokens

    @property
    def queue(self) -> AsyncJobQueue:
        return self._queue

    @property
    def credentials(self) -> GoogleCredentialStore:
        return self._credentials

    @property
    def metrics(self) -> InMemoryMetrics:
        return self._metrics

    # =========================================================================
    # IAdminModule
    # =========================================================================

    def manifest(self) -> ModuleManifest:
        return ModuleManifest(
            id=MODULE_ID,
            name_key="modules.esign.name",
            description_key="modules.esign.description",
            feature_flags=frozenset({"commands", "jobs"}),
        )

    def register(self, ctx: ModuleContext) -> None:
        admin = ctx.admin
        self._base_path = admin.config.normalized_base_path()
        logger.info("E-Sign module registering...")

        agreement_repo = AgreementRepository(self._store, self._agreements)
        admin.register_panel("agreements", self._agreements_panel(agreement_repo))
        admin.register_panel("job_runs", self._job_runs_panel())
        admin.register_panel("email_logs", self._email_logs_panel())
        admin.register_panel("audit_events", self._audit_events_panel())

        admin.dashboard.register_provider(
            WidgetSpec(
                code="esign.agreement_status",
                name="Agreements by status",
                required_keys=("draft", "sent", "completed", "total"),
                permission="esign.agreements.view",
            ),
            self._agreement_status_widget,
        )
        admin.dashboard.register_provider(
            WidgetSpec(
                code="esign.delivery_health",
                name="Delivery health",
                default_area="sidebar",
                required_keys=("email_sent", "email_failed", "email_retry", "finalize_success", "finalize_failure"),
                permission="esign.job_runs.view",
            ),
            self._delivery_health_widget,
        )

        admin.commands.register(CompleteAgreementCommand(self._store, self._agreements, self._handlers))
        admin.commands.register(GoogleImportCommand(self._queue))

        admin.search.register("agreements", RepositorySearchAdapter(
            agreement_repo,
            "agreement",
            lambda r: SearchResult(
                type="agreement",
                id=r["id"],
                title=r.get("title") or r["id"],
                description=r.get("status", ""),
                url=f"{self._base_path}/agreements/{r['id']}",
                icon="file-signature",
            ),
            permission="esign.agreements.view",
        ))

        admin.jobs.register(Job(
            name="esign.completion_sweep",
            schedule="*/15 * * * *",
            description="Finalize completed agreements that have no certificate yet",
            handler=self._completion_sweep,
        ))
        logger.info("E-Sign module registered")

    def menu_items(self, locale: str) -> list[MenuItem]:
        base = self._base_path
        return [
            MenuItem(
                id="esign",
                type="group",
                label="E-Sign",
                label_key="menu.esign",
                icon="file-signature",
                position=30,
                collapsible=True,
                children=(
                    MenuItem(id="esign.agreements", label="Agreements", label_key="menu.esign.agreements",
                             position=1, target=MenuTarget(path=f"{base}/agreements", key="agreements"),
                             permissions=("esign.agreements.view",)),
                    MenuItem(id="esign.job_runs", label="Job Runs", label_key="menu.esign.job_runs",
                             position=2, target=MenuTarget(path=f"{base}/job_runs", key="job_runs"),
                             permissions=("esign.job_runs.view",)),
                    MenuItem(id="esign.email_logs", label="Email Logs", label_key="menu.esign.email_logs",
                             position=3, target=MenuTarget(path=f"{base}/email_logs", key="email_logs"),
                             permissions=("esign.email_logs.view",)),
                    MenuItem(id="esign.audit_events", label="Audit Trail", label_key="menu.esign.audit_events",
                             position=4, target=MenuTarget(path=f"{base}/audit_events", key="audit_events"),
                             permissions=("esign.audit_events.view",)),
                ),
            )
        ]

    async def on_startup(self) -> None:
        if self._engine is not None:
            await init_database(self._engine)
            logger.info("E-Sign job store schema ready")

    async def on_shutdown(self) -> None:
        await self._queue.close()
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
        logger.info("E-Sign module shut down")

    def get_status(self) -> dict:
        snapshot = self._metrics.snapshot()
        degraded = snapshot.email_failed_total > 0 or snapshot.finalize_failure_total > 0
        return {
            "status": "warning" if degraded else "active",
            "details": {
                "Email transport": self._settings.normalized_transport or "deterministic",
                "Job store": "sql" if self._engine is not None else "memory",
                "Queue pending": str(self._queue.pending()),
                "Emails sent": str(snapshot.email_sent_total),
                "Emails failed": str(snapshot.email_failed_total),
            },
        }

    # =========================================================================
    # Panels
    # =========================================================================

    def _agreements_panel(self, repository: AgreementRepository) -> PanelBuilder:
        status = Field(name="status", label="Status", type="select", read_only=True, options=_options(AgreementStatus))
        fields = (
            Field(name="title", label="Title", required=True),
            Field(name="message", label="Message", type="textarea"),
            Field(name="document_id", label="Document"),
        )

        async def send(ctx: AdminContext, payload: dict[str, Any]) -> dict[str, Any]:
            agreement_id = str(payload.get("id") or (payload.get("ids") or [""])[0])
            agreement = await self._agreements.send(ctx.scope.normalized(), agreement_id, actor_id=ctx.user_id)
            return {"agreement_id": agreement.id, "status": agreement.status.value}

        id_schema = {
            "type": "object",
            "properties": {"id": {"type": "string"}, "correlation_id": {"type": "string"}},
            "additionalProperties": False,
        }
        return (
            PanelBuilder("Agreements")
            .with_repository(repository)
            .list_fields(Field(name="id", label="ID", read_only=True), *fields, status,
                         Field(name="created_at", label="Created", type="datetime", read_only=True))
            .form_fields(*fields)
            .filters(
                Filter(name="_search", label="Search"),
                Filter(name="status", label="Status", type="select", options=_options(AgreementStatus)),
            )
            .actions(
                Action(name="send", label="Send", icon="send", permission="esign.agreements.send",
                       payload_required=("id",), payload_schema=id_schema),
                Action(name="complete", label="Complete", icon="check", command_name=CompleteAgreementCommand.message_type,
                       permission="esign.agreements.complete", confirm="Complete this agreement?",
                       payload_required=("id",), payload_schema=id_schema),
                Action(
                    name="import_google", label="Import from Google Drive", icon="cloud-download", scope="bulk",
                    command_name=GoogleImportCommand.message_type, permission="esign.agreements.create",
                    payload_required=("google_file_id",),
                    payload_schema={
                        "type": "object",
                        "properties": {
                            "google_file_id": {"type": "string"},
                            "document_title": {"type": "string"},
                            "agreement_title": {"type": "string"},
                        },
                        "additionalProperties": False,
                    },
                ),
            )
            .permissions(PanelPermissions(
                view="esign.agreements.view",
                create="esign.agreements.create",
                edit="esign.agreements.edit",
                delete="esign.agreements.delete",
            ))
            .on_action("send", send)
        )

    def _job_runs_panel(self) -> PanelBuilder:
        return (
            PanelBuilder("Job Runs")
            .with_repository(StoreRecordRepository(
                self._job_store.list_job_runs, ("job_name", "dedupe_key", "agreement_id", "correlation_id"), "job run",
            ))
            .list_fields(
                Field(name="id", label="ID", read_only=True),
                Field(name="job_name", label="Job"),
                Field(name="dedupe_key", label="Dedupe Key"),
                Field(name="agreement_id", label="Agreement"),
                Field(name="status", label="Status", type="select", options=_options(JobRunStatus)),
                Field(name="attempt_count", label="Attempts", type="integer"),
                Field(name="max_attempts", label="Max Attempts", type="integer"),
                Field(name="last_error", label="Last Error"),
                Field(name="next_retry_at", label="Next Retry", type="datetime"),
                Field(name="correlation_id", label="Correlation"),
            )
            .filters(
                Filter(name="_search", label="Search"),
                Filter(name="status", label="Status", type="select", options=_options(JobRunStatus)),
                Filter(name="job_name", label="Job"),
            )
            .permissions(PanelPermissions(view="esign.job_runs.view"))
        )

    def _email_logs_panel(self) -> PanelBuilder:
        return (
            PanelBuilder("Email Logs")
            .with_repository(StoreRecordRepository(
                self._job_store.list_email_logs, ("template_code", "provider_message_id", "correlation_id"), "email log",
            ))
            .list_fields(
                Field(name="id", label="ID", read_only=True),
                Field(name="agreement_id", label="Agreement"),
                Field(name="recipient_id", label="Recipient"),
                Field(name="template_code", label="Template"),
                Field(name="status", label="Status", type="select", options=_options(EmailLogStatus)),
                Field(name="provider_message_id", label="Provider Message"),
                Field(name="attempt_count", label="Attempts", type="integer"),
                Field(name="failure_reason", label="Failure Reason"),
                Field(name="next_retry_at", label="Next Retry", type="datetime"),
                Field(name="sent_at", label="Sent", type="datetime"),
            )
            .filters(
                Filter(name="_search", label="Search"),
                Filter(name="status", label="Status", type="select", options=_options(EmailLogStatus)),
            )
            .permissions(PanelPermissions(view="esign.email_logs.view"))
        )

    def _audit_events_panel(self) -> PanelBuilder:
        return (
            PanelBuilder("Audit Trail")
            .with_repository(AuditEventRepository(
                self._job_store.list_events, ("event_type", "agreement_id", "metadata_json"), "audit event",
            ))
            .list_fields(
                Field(name="id", label="ID", read_only=True),
                Field(name="agreement_id", label="Agreement"),
                Field(name="event_type", label="Event"),
                Field(name="actor_type", label="Actor"),
                Field(name="metadata_json", label="Metadata", type="textarea"),
                Field(name="created_at", label="At", type="datetime"),
            )
            .filters(Filter(name="_search", label="Search"), Filter(name="event_type", label="Event"))
            .permissions(PanelPermissions(view="esign.audit_events.view"))
        )

    # =========================================================================
    # Widgets & jobs
    # =========================================================================

    async def _agreement_status_widget(self, ctx: AdminContext, config: dict[str, Any]) -> dict[str, Any]:
        counts = {status.value: 0 for status in AgreementStatus}
        agreements = await self._store.list_agreements(ctx.scope.normalized())
        for agreement in agreements:
            counts[agreement.status.value] += 1
        return {**counts, "total": len(agreements)}

    def _delivery_health_widget(self, ctx: AdminContext, config: dict[str, Any]) -> dict[str, Any]:
        snapshot = self._metrics.snapshot()
        return {
            "email_sent": snapshot.email_sent_total,
            "email_failed": snapshot.email_failed_total,
            "email_retry": snapshot.email_retry_total,
            "finalize_success": snapshot.finalize_success_total,
            "finalize_failure": snapshot.finalize_failure_total,
            "completion_delivery_failure": snapshot.completion_delivery_failure_total,
        }

    async def _completion_sweep(self, ctx: AdminContext) -> dict[str, Any]:
        return await sweep_completed_agreements(
            self._store, self._handlers, ctx.scope.normalized(), artifacts=self._store,
        )
