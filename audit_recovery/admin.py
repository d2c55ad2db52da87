"""
Administrative surface for recovery tooling.

Each ``AdminService`` call takes the calling ``Actor`` and a raw payload
mapping. The privilege check and payload validation both run before any store
access. Results are plain camelCase dictionaries ready for a transport layer;
``error_response`` turns any raised error into a status code and body.
"""

import functools
import logging
from datetime import datetime
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    List,
    Mapping,
    Optional,
    Tuple,
    Type,
    TypeVar,
)

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from .cleanup import CleanupScanner, CollectionKind
from .config import RecoveryConfig, get_config
from .exceptions import RecoveryError, StoreUnavailableError, ValidationError
from .operation_log import OperationLogFilter, OperationLogStore, OperationType
from .restore import RestoreEngine
from .soft_delete import SoftDeleteService
from .store import DocumentStore
from .time_utils import Clock, to_datetime, utcnow

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)
Payload = Optional[Mapping[str, Any]]
Handler = Callable[..., Awaitable[Dict[str, Any]]]


class Actor(BaseModel):
    """Caller identity supplied by the external authentication layer."""

    id: str = Field(..., min_length=1, description="Actor identifier")
    is_privileged: bool = Field(False, description="Holds the admin capability")


class _Request(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="forbid")


class ListLogsRequest(_Request):
    collection: Optional[str] = None
    operation_type: Optional[OperationType] = Field(None, alias="operationType")
    doc_id: Optional[str] = Field(
        None, validation_alias=AliasChoices("docId", "targetDocId", "doc_id")
    )
    operated_by: Optional[str] = Field(None, alias="operatedBy")
    limit: Optional[int] = Field(None, ge=1)
    cursor: Optional[str] = None


class LogEntryRequest(_Request):
    log_entry_id: str = Field(..., alias="logEntryId", min_length=1)


class EmptyRequest(_Request):
    pass


class RetentionPurgeRequest(_Request):
    retention_days: int = Field(..., alias="retentionDays", ge=1)


class ListDeletedRequest(_Request):
    collection: Optional[str] = None
    limit: Optional[int] = Field(None, ge=1)
    cursor: Optional[str] = None
    newest_first: bool = Field(True, alias="newestFirst")


class DocumentRequest(_Request):
    collection: str = Field(..., min_length=1)
    id: str = Field(..., min_length=1)


class PermanentDeleteRequest(DocumentRequest):
    force: bool = False


class CleanupSearchRequest(_Request):
    collection: str = Field(..., min_length=1)
    before: Optional[datetime] = None
    type: Optional[CollectionKind] = None
    limit: Optional[int] = Field(None, ge=1)

    @field_validator("before", mode="before")
    @classmethod
    def parse_before(cls, v: Any) -> Optional[datetime]:
        """Accept any ISO-8601 form dateutil understands."""
        return to_datetime(v)


class CleanupApplyRequest(_Request):
    collection: str = Field(..., min_length=1)
    ids: List[str] = Field(default_factory=list)
    skip_deleted: bool = Field(False, alias="skipDeleted")


def parse_request(model: Type[M], payload: Payload) -> M:
    """
    Validate a raw payload against a request model.

    Raises:
        ValidationError: With one ``{"field", "message"}`` item per problem
    """
    try:
        return model.model_validate(dict(payload or {}))
    except PydanticValidationError as exc:
        errors = [
            {
                "field": ".".join(str(part) for part in error["loc"]),
                "message": error["msg"],
            }
            for error in exc.errors()
        ]
        raise ValidationError(
            f"Invalid request: {errors[0]['field']}: {errors[0]['message']}"
            if errors
            else "Invalid request",
            details={"errors": errors},
        ) from exc


def require_privileged(func: Handler) -> Handler:
    """
    Decorator rejecting callers without the admin capability.

    Usage:
        @require_privileged
        async def purge_expired_logs(self, actor, payload=None):
            ...
    """

    @functools.wraps(func)
    async def wrapper(self: Any, actor: Actor, *args: Any, **kwargs: Any) -> Any:
        if actor is None or not actor.is_privileged:
            who = actor.id if actor is not None else "anonymous"
            logger.warning(f"Denied {func.__name__} for {who}")
            raise PermissionError(f"Admin privileges required for {func.__name__}")
        return await func(self, actor, *args, **kwargs)

    return wrapper


class AdminService:
    """
    Entry point for the admin history, deleted items and cleanup views.

    Example:
        >>> admin = AdminService.from_store(store)
        >>> actor = Actor(id="admin_1", is_privileged=True)
        >>> await admin.list_logs(actor, {"collection": "videos", "limit": 20})
        {'items': [...], 'nextCursor': '...'}
    """

    def __init__(
        self,
        log_store: OperationLogStore,
        soft_delete: SoftDeleteService,
        restore_engine: RestoreEngine,
        scanner: CleanupScanner,
        config: Optional[RecoveryConfig] = None,
    ):
        self.log_store = log_store
        self.soft_delete = soft_delete
        self.restore_engine = restore_engine
        self.scanner = scanner
        self.config = config or get_config()

    @classmethod
    def from_store(
        cls,
        store: DocumentStore,
        config: Optional[RecoveryConfig] = None,
        clock: Clock = utcnow,
    ) -> "AdminService":
        """Wire every service against one document store."""
        config = config or get_config()
        log_store = OperationLogStore(
            store,
            retention_days=config.log_retention_days,
            clock=clock,
            collection=config.log_collection,
            default_list_limit=config.default_list_limit,
            max_list_limit=config.max_list_limit,
            timeout=config.store_timeout_seconds,
        )
        return cls(
            log_store=log_store,
            soft_delete=SoftDeleteService(
                store,
                log_store,
                grace_period_days=config.permanent_delete_grace_days,
                collections=config.soft_delete_collections,
                log_permanent_deletes=config.log_permanent_deletes,
                timeout=config.store_timeout_seconds,
            ),
            restore_engine=RestoreEngine(
                store, log_store, timeout=config.store_timeout_seconds
            ),
            scanner=CleanupScanner(store, log_store, config=config),
            config=config,
        )

    def _check_soft_delete_collection(self, collection: Optional[str]) -> None:
        if collection and collection not in self.config.soft_delete_collections:
            raise ValidationError(
                f"Collection {collection!r} does not support soft delete",
                details={"collection": collection},
            )

    # History view

    @require_privileged
    async def list_logs(self, actor: Actor, payload: Payload = None) -> Dict[str, Any]:
        request = parse_request(ListLogsRequest, payload)
        page = await self.log_store.list(
            OperationLogFilter(
                collection=request.collection,
                operation_type=request.operation_type,
                doc_id=request.doc_id,
                operated_by=request.operated_by,
            ),
            limit=request.limit,
            cursor=request.cursor,
        )
        return {
            "items": [
                entry.model_dump(by_alias=True, mode="json") for entry in page.entries
            ],
            "nextCursor": page.next_cursor,
        }

    @require_privileged
    async def restore_from_log(
        self, actor: Actor, payload: Payload = None
    ) -> Dict[str, Any]:
        request = parse_request(LogEntryRequest, payload)
        doc_id = await self.restore_engine.restore_from_log(
            request.log_entry_id, actor=actor.id
        )
        return {"restoredDocId": doc_id}

    @require_privileged
    async def preview_restore(
        self, actor: Actor, payload: Payload = None
    ) -> Dict[str, Any]:
        request = parse_request(LogEntryRequest, payload)
        preview = await self.restore_engine.preview(request.log_entry_id)
        return preview.model_dump(by_alias=True, mode="json")

    @require_privileged
    async def purge_expired_logs(
        self, actor: Actor, payload: Payload = None
    ) -> Dict[str, Any]:
        parse_request(EmptyRequest, payload)
        deleted = await self.log_store.purge_expired()
        logger.info(f"{actor.id} purged {deleted} expired log entries")
        return {"deletedCount": deleted}

    @require_privileged
    async def purge_logs_by_retention(
        self, actor: Actor, payload: Payload = None
    ) -> Dict[str, Any]:
        """Delete entries older than ``retentionDays`` (e.g. 30, 90 or 180)."""
        request = parse_request(RetentionPurgeRequest, payload)
        deleted = await self.log_store.purge_older_than(request.retention_days)
        logger.info(
            f"{actor.id} purged {deleted} log entries older than "
            f"{request.retention_days} days"
        )
        return {"deletedCount": deleted, "retentionDays": request.retention_days}

    # Deleted items view

    @require_privileged
    async def list_deleted(
        self, actor: Actor, payload: Payload = None
    ) -> Dict[str, Any]:
        request = parse_request(ListDeletedRequest, payload)
        self._check_soft_delete_collection(request.collection)
        page = await self.soft_delete.list_deleted(
            collection=request.collection,
            limit=request.limit,
            cursor=request.cursor,
            newest_first=request.newest_first,
        )
        return {
            "items": [
                item.model_dump(by_alias=True, mode="json") for item in page.items
            ],
            "total": page.total,
            "nextCursor": page.next_cursor,
        }

    @require_privileged
    async def restore_deleted(
        self, actor: Actor, payload: Payload = None
    ) -> Dict[str, Any]:
        request = parse_request(DocumentRequest, payload)
        self._check_soft_delete_collection(request.collection)
        await self.soft_delete.restore(request.collection, request.id, actor=actor.id)
        return {"success": True}

    @require_privileged
    async def permanent_delete(
        self, actor: Actor, payload: Payload = None
    ) -> Dict[str, Any]:
        request = parse_request(PermanentDeleteRequest, payload)
        self._check_soft_delete_collection(request.collection)
        await self.soft_delete.permanent_delete(
            request.collection, request.id, actor=actor.id, force=request.force
        )
        return {"success": True}

    # Cleanup view

    @require_privileged
    async def cleanup_search(
        self, actor: Actor, payload: Payload = None
    ) -> Dict[str, Any]:
        request = parse_request(CleanupSearchRequest, payload)
        candidates = await self.scanner.find_stale(
            request.collection,
            request.before or self.scanner.clock(),
            limit=request.limit,
            kind=request.type.value if request.type else None,
        )
        return {
            "items": [c.model_dump(by_alias=True, mode="json") for c in candidates],
            "count": len(candidates),
        }

    @require_privileged
    async def cleanup_apply(
        self, actor: Actor, payload: Payload = None
    ) -> Dict[str, Any]:
        request = parse_request(CleanupApplyRequest, payload)
        self.scanner.kind_of(request.collection)
        result = await self.scanner.batch_soft_delete(
            request.collection,
            request.ids,
            actor=actor.id,
            skip_deleted=request.skip_deleted,
        )
        return result.model_dump(by_alias=True)


def error_response(exc: BaseException) -> Tuple[int, Dict[str, Any]]:
    """
    Map an error to ``(status_code, body)``.

    Server-side failures (5xx) never expose their message. Structured details
    such as ``daysSinceDeleted`` or ``remainingIds`` are always included.
    """
    if isinstance(exc, PermissionError):
        return 403, {"error": str(exc) or "Forbidden"}

    if isinstance(exc, RecoveryError):
        status = exc.status_code
        if status >= 500:
            message = (
                "Service temporarily unavailable"
                if isinstance(exc, StoreUnavailableError)
                else "Internal server error"
            )
            logger.error(f"[API Error] {type(exc).__name__}: {exc.message}")
        else:
            message = exc.message
        body: Dict[str, Any] = {"error": message, **exc.details}
        if exc.retryable:
            body["retryable"] = True
        return status, body

    logger.error(f"[API Error] unexpected {type(exc).__name__}: {exc}", exc_info=exc)
    return 500, {"error": "Internal server error"}
