"""Query execution pipeline shared by every adapter.

Every query goes through the same steps: request validation, statement
policy, page size resolution, execution, column type normalization, error
classification and audit emission. Query failures are returned as data,
``execute`` never raises for them.
"""

import logging
import time
from typing import TYPE_CHECKING, Any, Callable, List, Optional

from dbscope.config.models import QuerySettings
from dbscope.db.errors import error_message
from dbscope.db.history import HistoryKind, HistoryRecord, HistoryRecorder
from dbscope.db.models import QueryColumn, QueryErrorKind, QueryPage, QueryRequest, QueryResult
from dbscope.db.types import CanonicalType

if TYPE_CHECKING:
    from dbscope.db.base import BaseAdapter
    from dbscope.db.connection import ConnectionSession

logger = logging.getLogger(__name__)


class QueryPipeline:
    """Runs queries through an adapter and turns the outcome into a QueryResult."""

    def __init__(self, settings: Optional[QuerySettings] = None, recorder: Optional[HistoryRecorder] = None) -> None:
        self.settings = settings or QuerySettings()
        self.recorder = recorder

    def resolve_page_size(self, page_size: Optional[int]) -> int:
        """Default a missing page size and clamp it to ``max_page_size``.

        Raises:
            ValueError: If ``page_size`` is not a positive integer.
        """
        if page_size is None:
            return self.settings.default_page_size
        if isinstance(page_size, bool) or not isinstance(page_size, int) or page_size < 1:
            raise ValueError(f"Page size must be a positive integer, got {page_size!r}")
        if page_size > self.settings.max_page_size:
            logger.debug(f"Clamping page size {page_size} to {self.settings.max_page_size}")
            return self.settings.max_page_size
        return page_size

    def execute(self, adapter: "BaseAdapter", session: "ConnectionSession", request: QueryRequest) -> QueryResult:
        """Run one page of ``request`` on the session's backend handle."""
        start_time = time.perf_counter()
        session_id, handle = session.session_id, session.handle

        if request.text is not None and not isinstance(request.text, str):
            return self.reject(
                adapter, session, None,
                f"Query text must be a string, got {type(request.text).__name__}", start_time,
            )
        text = (request.text or '').strip()
        if not text:
            return self.reject(adapter, session, request.text, "Query text is empty", start_time)

        try:
            page_size = self.resolve_page_size(request.page_size)
            parameters = list(request.parameters or [])
        except (TypeError, ValueError) as e:
            return self.reject(adapter, session, text, str(e), start_time)

        violation = adapter.policy.check(text)
        if violation is not None:
            logger.info(f"Rejected statement on session {session_id}: {violation.message}")
            result = QueryResult.failure(QueryErrorKind.DISALLOWED_OPERATION, violation.message)
            return self._finish(adapter, session_id, text, result, start_time)

        bounded = QueryRequest(
            text=text,
            page_size=page_size,
            page_state=request.page_state,
            parameters=parameters,
        )
        result = self._run(adapter, lambda: adapter.run_query(handle, bounded))
        return self._finish(adapter, session_id, text, result, start_time)

    def reject(self, adapter: "BaseAdapter", session: "ConnectionSession", text: Optional[str], message: str,
               start_time: Optional[float] = None) -> QueryResult:
        """Audited QuerySyntaxError result for a request that never reaches the backend."""
        result = QueryResult.failure(QueryErrorKind.QUERY_SYNTAX_ERROR, message)
        return self._finish(adapter, session.session_id, text, result, start_time or time.perf_counter())

    def execute_aggregation(self, adapter: "BaseAdapter", session: "ConnectionSession", pipeline: Any,
                            page_size: Optional[int] = None) -> QueryResult:
        """Run an aggregation pipeline; same result and audit semantics as :meth:`execute`."""
        start_time = time.perf_counter()
        session_id, handle = session.session_id, session.handle
        text = str(pipeline)

        try:
            size = self.resolve_page_size(page_size)
        except ValueError as e:
            result = QueryResult.failure(QueryErrorKind.QUERY_SYNTAX_ERROR, str(e))
            return self._finish(adapter, session_id, text, result, start_time)

        result = self._run(adapter, lambda: adapter.run_aggregation(handle, pipeline, size))
        return self._finish(adapter, session_id, text, result, start_time)

    def _run(self, adapter: "BaseAdapter", call: Callable[[], QueryPage]) -> QueryResult:
        try:
            page = call()
        except Exception as e:
            kind = adapter.classify_error(e)
            logger.debug(f"Query failed on {adapter.backend_type} ({kind.value}): {e}")
            return QueryResult.failure(kind, error_message(e))

        columns = self.normalize_columns(adapter, page)
        return QueryResult(
            success=True,
            rows=page.rows,
            columns=columns,
            page_state=page.next_page_state,
            row_count=len(page.rows),
        )

    def normalize_columns(self, adapter: "BaseAdapter", page: QueryPage) -> List[QueryColumn]:
        """Canonical result columns; derived from the first row when the backend reports none."""
        if page.columns:
            columns = []
            for name, native in page.columns:
                try:
                    canonical = adapter.normalize_type(native)
                except Exception as e:
                    logger.debug(f"Could not normalize type of column {name}: {e}")
                    canonical = CanonicalType.UNKNOWN.value
                columns.append(QueryColumn(name=name, type=canonical))
            return columns
        if page.rows:
            return [QueryColumn(name=name, type=CanonicalType.UNKNOWN.value) for name in page.rows[0]]
        return []

    def _finish(self, adapter: "BaseAdapter", session_id: str, text: Optional[str],
                result: QueryResult, start_time: float) -> QueryResult:
        result.execution_time_ms = round((time.perf_counter() - start_time) * 1000, 2)
        self._audit(adapter, session_id, text, result)
        return result

    def _audit(self, adapter: "BaseAdapter", session_id: str, text: Optional[str], result: QueryResult) -> None:
        if self.recorder is None:
            return
        record = HistoryRecord(
            kind=HistoryKind.QUERY,
            session_id=session_id,
            backend_type=adapter.backend_type,
            status='success' if result.success else 'error',
            query_language=adapter.query_language.value,
            query_text=text,
            execution_time_ms=result.execution_time_ms,
            row_count=result.row_count if result.success else None,
            error=result.error,
            error_kind=result.error_kind.value if result.error_kind else None,
        )
        try:
            self.recorder.submit(record)
        except Exception as e:
            logger.warning(f"Could not submit query history for session {session_id}: {e}")
