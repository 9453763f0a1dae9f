"""
Audit Logger

Every write to the store and every backup run is logged.
This provides:
1. Traceability of changes to financial records
2. Debugging capability when a restore or migration fails

The audit logger:
- Is async so it composes with the store's async operations
- Writes structured events through structlog
"""

import logging
from typing import Optional

import structlog

from money_manager.config import get_settings
from money_manager.models.audit import AuditEvent, AuditEventBuilder, AuditSeverity


def configure_logging(level: Optional[str] = None, json_output: Optional[bool] = None) -> None:
    """
    Configure structlog on top of the standard library logger.

    Defaults come from AppSettings; arguments override them.
    """
    app_settings = get_settings().app
    level = level or app_settings.log_level
    json_output = app_settings.log_json if json_output is None else json_output

    logging.basicConfig(format="%(message)s", level=level)
    logging.getLogger("money_manager").setLevel(level)

    renderer = (
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer()
    )
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


configure_logging()


def get_logger(name: str):
    """Get a structlog logger bound to a module name."""
    return structlog.get_logger(name)


class AuditLogger:
    """
    Central audit logging service.

    Logs every event as a structured line; severity picks the log level.
    """

    def __init__(self, logger_name: str = "money_manager.audit"):
        app_settings = get_settings().app
        self._logger = structlog.get_logger(logger_name).bind(
            app=app_settings.app_name,
            environment=app_settings.app_environment,
        )

    async def log(self, event: AuditEvent) -> None:
        """Log an audit event."""
        self.emit(event)

    def emit(self, event: AuditEvent) -> None:
        """Synchronous variant of log() for code that cannot await."""
        log_dict = event.to_log_dict()

        if event.severity in (AuditSeverity.ERROR, AuditSeverity.CRITICAL):
            self._logger.error("audit_event", **log_dict)
        elif event.severity == AuditSeverity.WARNING:
            self._logger.warning("audit_event", **log_dict)
        elif event.severity == AuditSeverity.DEBUG:
            self._logger.debug("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

    async def log_record_created(self, collection: str, record_id: str, upsert: bool = False) -> None:
        await self.log(AuditEventBuilder.record_created(collection, record_id, upsert))

    async def log_record_updated(self, collection: str, record_id: str, fields: list[str]) -> None:
        await self.log(AuditEventBuilder.record_updated(collection, record_id, fields))

    async def log_record_soft_deleted(self, collection: str, record_id: str) -> None:
        await self.log(AuditEventBuilder.record_soft_deleted(collection, record_id))

    async def log_records_purged(self, collection: str, count: int) -> None:
        await self.log(AuditEventBuilder.records_purged(collection, count))

    async def log_bulk_written(self, collection: str, count: int) -> None:
        await self.log(AuditEventBuilder.records_bulk_written(collection, count))

    async def log_collection_cleared(self, collection: str) -> None:
        await self.log(AuditEventBuilder.collection_cleared(collection))

    async def log_backup_exported(self, counts: dict[str, int], include_attachments: bool) -> None:
        await self.log(AuditEventBuilder.backup_exported(counts, include_attachments))

    async def log_backup_imported(
        self,
        policy: str,
        counts: dict[str, int],
        legacy_format: bool,
    ) -> None:
        await self.log(AuditEventBuilder.backup_imported(policy, counts, legacy_format))

    async def log_backup_import_failed(self, policy: str, error: Exception) -> None:
        await self.log(
            AuditEventBuilder.backup_import_failed(policy, type(error).__name__, str(error))
        )

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
    ) -> None:
        """Log an error."""
        await self.log(AuditEventBuilder.system_error(error_type, error_message, details))
