"""
FetchEngine module for the paginated fetch, transform and load loop over API endpoints
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from .database_manager import DatabaseManager
from .deadline import RunTimeoutError
from .filter_criteria import update_criteria
from .http_client import APIRequest, APIResponse, HTTPClient, UnauthorizedError
from .pagination_strategy import PaginationCursor
from .payload_normalizer import normalize_payload
from .sync_context import EndpointDescriptor, SyncContext
from .token_manager import AuthenticationError

logger = logging.getLogger(__name__)


class SyncState(Enum):
    FETCHING = "fetching"
    TRANSFORMING = "transforming"
    LOADING = "loading"
    DONE = "done"
    ABORTED = "aborted"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


@dataclass
class EndpointResult:
    """Outcome of synchronising one endpoint descriptor"""
    table_name: str
    endpoint: str
    state: SyncState = SyncState.FETCHING
    pages_loaded: int = 0
    rows_inserted: int = 0
    final_offset: int = 0
    error: Optional[str] = None
    start_time: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    end_time: Optional[datetime] = None

    @property
    def succeeded(self) -> bool:
        """Completed pages and ceiling trips both count as success"""
        return self.state in (SyncState.DONE, SyncState.ABORTED)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'table_name': self.table_name,
            'endpoint': self.endpoint,
            'status': self.state.value,
            'pages_loaded': self.pages_loaded,
            'rows_inserted': self.rows_inserted,
            'final_offset': self.final_offset,
            'error': self.error,
            'start_time': self.start_time,
            'end_time': self.end_time
        }


class FetchLoadEngine:
    """
    Drives each endpoint through FETCHING -> TRANSFORMING -> LOADING until an
    empty page, the iteration ceiling, a fault, or the run deadline stops it

    Endpoints are processed one at a time in the order given; table load order
    matters to downstream consumers.
    """

    def __init__(self, context: SyncContext, http_client: HTTPClient,
                 database_manager: DatabaseManager, max_iterations: int = 100,
                 request_timeout_seconds: float = 300):
        self.context = context
        self.http_client = http_client
        self.database_manager = database_manager
        self.max_iterations = max_iterations
        self.request_timeout_seconds = request_timeout_seconds

    def run_endpoints(self, endpoints: List[EndpointDescriptor],
                      stop_on_failure: bool = False) -> List[EndpointResult]:
        """
        Synchronise every endpoint in order

        Args:
            endpoints: Endpoint descriptors for this run
            stop_on_failure: Skip the remaining endpoints after the first failure

        Returns:
            One EndpointResult per descriptor. Once the run deadline elapses,
            the in-flight endpoint and every endpoint not yet started are
            reported as TIMED_OUT.
        """
        results = []

        for index, descriptor in enumerate(endpoints):
            result = self.process_endpoint(descriptor)
            results.append(result)

            if result.state == SyncState.TIMED_OUT:
                for pending in endpoints[index + 1:]:
                    results.append(self._timed_out_result(pending))
                logger.error(f"Run deadline elapsed; {len(endpoints) - index - 1} endpoints were not started")
                break

            if result.state == SyncState.FAILED and stop_on_failure:
                logger.error(f"Stopping run after failure on {descriptor.table_name}")
                break

        return results

    def process_endpoint(self, descriptor: EndpointDescriptor) -> EndpointResult:
        """
        Synchronise a single endpoint and report its outcome

        Faults are recorded on the result rather than raised so that sibling
        endpoints can still run.
        """
        result = EndpointResult(table_name=descriptor.table_name, endpoint=descriptor.endpoint)
        logger.info(f"Starting {descriptor.table_name} from {descriptor.endpoint}")

        try:
            self._run_pages(descriptor, result)
        except RunTimeoutError as e:
            result.state = SyncState.TIMED_OUT
            result.error = str(e)
            logger.error(f"Run deadline elapsed while processing {descriptor.table_name}")
        except Exception as e:
            failed_in = result.state.value
            result.state = SyncState.FAILED
            result.error = f"{type(e).__name__}: {e}"
            logger.error(f"Error processing {descriptor.table_name} while {failed_in}: {e}")
        finally:
            result.end_time = datetime.now(timezone.utc)

        logger.info(
            f"Finished {descriptor.table_name}: {result.state.value}, "
            f"{result.pages_loaded} pages, {result.rows_inserted} rows"
        )
        return result

    def _run_pages(self, descriptor: EndpointDescriptor, result: EndpointResult) -> None:
        cursor = PaginationCursor(batch_size=descriptor.batch_size)
        criteria = update_criteria(descriptor.filter_template, self.context.tenant.day_offset)
        endpoint_url = f"{self.context.tenant.api_root_url}{descriptor.endpoint}"
        iterations = 0

        while True:
            self.context.deadline.raise_if_cancelled()

            if iterations >= self.max_iterations:
                logger.warning(
                    f"Pagination anomaly: {descriptor.table_name} reached the ceiling of "
                    f"{self.max_iterations} pages at offset {cursor.offset}; stopping"
                )
                result.state = SyncState.ABORTED
                return
            iterations += 1

            result.state = SyncState.FETCHING
            request = APIRequest(url=cursor.build_url(endpoint_url, criteria))
            logger.info(f"Requesting {request.url}")
            response = self._fetch_page(request)

            result.state = SyncState.TRANSFORMING
            records = normalize_payload(response.text)

            if not records:
                logger.info(f"Empty page for {descriptor.table_name}; all records fetched")
                result.state = SyncState.DONE
                return

            result.state = SyncState.LOADING
            result.rows_inserted += self.database_manager.insert_json_batch(descriptor.table_name, records)
            result.pages_loaded += 1

            cursor.advance()
            result.final_offset = cursor.offset

    def _fetch_page(self, request: APIRequest) -> APIResponse:
        """
        Send a page request with a bearer token, refreshing once on 401

        Raises:
            AuthenticationError: If the request is still unauthorised after a forced refresh
        """
        token = self.context.ensure_token()
        try:
            return self._send_with_retry(request.with_bearer(token))
        except UnauthorizedError:
            logger.warning("Received 401 Unauthorized. Refreshing token and retrying request...")

        token = self.context.ensure_token(force=True)
        try:
            return self._send_with_retry(request.with_bearer(token))
        except UnauthorizedError as e:
            raise AuthenticationError(f"Request still unauthorized after token refresh: {request.url}") from e

    def _send_with_retry(self, request: APIRequest) -> APIResponse:
        deadline = self.context.deadline
        return self.context.retry_policy.execute(
            lambda: self.http_client.send(request, deadline.child(self.request_timeout_seconds)),
            deadline,
            f"{request.method} {request.url}"
        )

    @staticmethod
    def _timed_out_result(descriptor: EndpointDescriptor) -> EndpointResult:
        now = datetime.now(timezone.utc)
        return EndpointResult(
            table_name=descriptor.table_name,
            endpoint=descriptor.endpoint,
            state=SyncState.TIMED_OUT,
            error="Run deadline elapsed before the endpoint was started",
            start_time=now,
            end_time=now
        )
