"""NSX Policy API client with retry logic, rate limiting and error mapping.

Only the narrow set of calls the subnet reconcilers need is exposed:
listing operator-owned subnets, the hierarchical infra patch, reading a
subnet, realization status, and the IP pool/allocation sub-APIs.

HTTP failures are mapped onto the operator's exception taxonomy:

- 400/403: NSXRestrictionError (NSX refused the configuration, terminal)
- 404: ResourceNotFoundError
- connection errors, timeouts, 409, 429, 5xx: NSXAPIError (transient,
  retried here a few times before being raised to the reconciler)
"""

import logging
import time
from collections.abc import Callable, Iterator
from functools import wraps
from typing import Any, ParamSpec, TypeVar

import requests

from config import OperatorConfig
from constants import RESOURCE_TYPE_SUBNET, TAG_SCOPE_CLUSTER
from metrics import NSX_API_CALLS, NSX_API_DURATION, NSX_API_RETRIES
from models import (
    IPPoolUsage,
    NSXAPIError,
    NSXRestrictionError,
    ResourceNotFoundError,
    VPCInfo,
    VpcSubnet,
)
from ratelimit import RateLimiter, get_rate_limiter

logger = logging.getLogger(__name__)

P = ParamSpec("P")
T = TypeVar("T")

POLICY_API_PREFIX = "/policy/api/v1"

RESTRICTION_STATUS_CODES = frozenset({400, 403})


def retry_on_error(
    max_retries: int = 3,
    delay: float = 1.0,
    backoff: float = 2.0,
    exceptions: tuple[type[Exception], ...] = (NSXAPIError,),
) -> Callable[[Callable[P, T]], Callable[P, T]]:
    """Decorator to retry operations on transient errors.

    Restriction and not-found errors are not in the default exception set,
    so they propagate on the first attempt.
    """

    def decorator(func: Callable[P, T]) -> Callable[P, T]:
        @wraps(func)
        def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            last_exception: Exception | None = None
            current_delay = delay

            for attempt in range(max_retries + 1):
                try:
                    return func(*args, **kwargs)
                except exceptions as e:
                    last_exception = e
                    if attempt < max_retries:
                        logger.warning(
                            "Attempt %d/%d failed for %s: %s. Retrying in %.1fs...",
                            attempt + 1,
                            max_retries + 1,
                            func.__name__,
                            e,
                            current_delay,
                        )
                        NSX_API_RETRIES.labels(operation=func.__name__).inc()
                        time.sleep(current_delay)
                        current_delay *= backoff
                    else:
                        logger.error(
                            "All %d attempts failed for %s",
                            max_retries + 1,
                            func.__name__,
                        )

            if last_exception is not None:
                raise NSXAPIError(
                    f"Operation {func.__name__} failed after {max_retries + 1} "
                    f"attempts: {last_exception}"
                ) from last_exception
            raise NSXAPIError(f"Operation {func.__name__} failed unexpectedly")

        return wrapper

    return decorator


def _escape_search_value(value: str) -> str:
    """Escape characters that are special in the NSX search query syntax."""
    return value.replace("/", "\\/").replace(":", "\\:")


def _error_detail(resp: requests.Response) -> str:
    """Extract the most useful error text from an NSX error response."""
    try:
        body = resp.json()
    except ValueError:
        return resp.text.strip()
    if isinstance(body, dict):
        message = body.get("error_message") or body.get("message")
        if message:
            code = body.get("error_code")
            return f"{message} (error_code={code})" if code else str(message)
    return resp.text.strip()


class NSXClient:
    """Thin client for the NSX Policy REST API."""

    # Default timeout for all HTTP requests: (connect, read) in seconds.
    DEFAULT_TIMEOUT = (10, 60)

    def __init__(
        self,
        base_url: str,
        username: str = "",
        password: str = "",
        token: str = "",
        verify: bool | str = True,
        rate_limiter: RateLimiter | None = None,
        session: requests.Session | None = None,
    ) -> None:
        """Initialize the NSX client.

        Args:
            base_url: NSX manager URL, e.g. https://nsx.example.com
            username: Basic auth user, ignored when token is set
            password: Basic auth password
            token: Bearer token
            verify: TLS verification flag or CA bundle path
            rate_limiter: Limiter shared by all calls (default: global)
            session: Pre-built session, mainly for tests
        """
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.session.headers.update(
            {"Content-Type": "application/json", "Accept": "application/json"}
        )
        if token:
            self.session.headers["Authorization"] = f"Bearer {token}"
        elif username:
            self.session.auth = (username, password)
        self.session.verify = verify
        self._rate_limiter = rate_limiter or get_rate_limiter()

    @classmethod
    def from_config(cls, config: OperatorConfig) -> "NSXClient":
        """Create a client from operator configuration."""
        logger.info("Connecting to NSX manager: %s", config.nsx_manager_url)
        return cls(
            base_url=config.nsx_manager_url,
            username=config.nsx_username,
            password=config.nsx_password,
            token=config.nsx_token,
            verify=config.verify,
        )

    def close(self) -> None:
        """Close the underlying HTTP session."""
        self.session.close()

    # -------------------------------------------------------------------------
    # Internal helpers
    # -------------------------------------------------------------------------

    def _request(
        self,
        method: str,
        path: str,
        operation: str,
        params: dict[str, Any] | None = None,
        body: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Send one request and return the parsed JSON body ({} when empty)."""
        url = f"{self.base_url}{POLICY_API_PREFIX}{path}"
        logger.debug("%s %s", method, url)

        start_time = time.monotonic()
        try:
            with self._rate_limiter.acquire():
                resp = self.session.request(
                    method,
                    url,
                    params=params,
                    json=body,
                    timeout=self.DEFAULT_TIMEOUT,
                )
        except (requests.ConnectionError, requests.Timeout) as e:
            NSX_API_CALLS.labels(method=method, operation=operation, status="error").inc()
            raise NSXAPIError(f"{method} {path} failed: {e}") from e
        finally:
            NSX_API_DURATION.labels(method=method, operation=operation).observe(
                time.monotonic() - start_time
            )

        if not resp.ok:
            NSX_API_CALLS.labels(method=method, operation=operation, status="error").inc()
            detail = _error_detail(resp)
            message = f"{method} {path} returned {resp.status_code}: {detail}"
            if resp.status_code == 404:
                raise ResourceNotFoundError(message)
            if resp.status_code in RESTRICTION_STATUS_CODES:
                raise NSXRestrictionError(message)
            raise NSXAPIError(message)

        NSX_API_CALLS.labels(method=method, operation=operation, status="success").inc()
        if not resp.content:
            return {}
        return resp.json()

    def _paginate(
        self, path: str, operation: str, params: dict[str, Any] | None = None
    ) -> Iterator[dict[str, Any]]:
        """Yield results across all pages of a cursor-paginated list call."""
        params = dict(params or {})
        while True:
            page = self._request("GET", path, operation, params=params)
            yield from page.get("results") or []
            cursor = page.get("cursor")
            if not cursor:
                return
            params["cursor"] = cursor

    # -------------------------------------------------------------------------
    # Subnet operations
    # -------------------------------------------------------------------------

    @retry_on_error()
    def search_subnets(self, cluster: str) -> list[VpcSubnet]:
        """List every VPC subnet tagged with the given cluster."""
        query = (
            f"resource_type:{RESOURCE_TYPE_SUBNET} "
            f"AND tags.scope:{_escape_search_value(TAG_SCOPE_CLUSTER)} "
            f"AND tags.tag:{_escape_search_value(cluster)}"
        )
        return [
            VpcSubnet.from_dict(item)
            for item in self._paginate(
                "/search/query", "search_subnets", params={"query": query}
            )
        ]

    @retry_on_error()
    def patch_infra(
        self, infra: dict[str, Any], enforce_revision_check: bool = False
    ) -> None:
        """Apply a hierarchical change set rooted at Infra."""
        self._request(
            "PATCH",
            "/infra",
            "patch_infra",
            params={"enforce_revision_check": str(enforce_revision_check).lower()},
            body=infra,
        )

    @retry_on_error()
    def get_subnet(self, vpc: VPCInfo, subnet_id: str) -> VpcSubnet:
        """Read a subnet back from NSX, including its rendered path."""
        data = self._request(
            "GET",
            f"{vpc.vpc_path}/subnets/{subnet_id}",
            "get_subnet",
        )
        return VpcSubnet.from_dict(data)

    # -------------------------------------------------------------------------
    # Realization status
    # -------------------------------------------------------------------------

    @retry_on_error(max_retries=1)
    def list_realized_entities(
        self, vpc: VPCInfo, intent_path: str
    ) -> list[dict[str, Any]]:
        """List realized entities for an intent path."""
        data = self._request(
            "GET",
            f"/orgs/{vpc.org_id}/projects/{vpc.project_id}"
            "/realized-state/realized-entities",
            "list_realized_entities",
            params={"intent_path": intent_path},
        )
        return data.get("results") or []

    # -------------------------------------------------------------------------
    # IP pool operations
    # -------------------------------------------------------------------------

    def _pool_path(self, vpc: VPCInfo, subnet_id: str, pool_id: str) -> str:
        return f"{vpc.subnet_path(subnet_id)}/ip-pools/{pool_id}"

    @retry_on_error()
    def get_ip_pool_usage(
        self, vpc: VPCInfo, subnet_id: str, pool_id: str
    ) -> IPPoolUsage:
        """Read the usage counters of a subnet's IP pool."""
        data = self._request(
            "GET", self._pool_path(vpc, subnet_id, pool_id), "get_ip_pool"
        )
        return IPPoolUsage.from_pool(data)

    @retry_on_error()
    def list_ip_allocations(
        self, vpc: VPCInfo, subnet_id: str, pool_id: str
    ) -> list[dict[str, Any]]:
        """List the IP allocations of a subnet's IP pool."""
        return list(
            self._paginate(
                f"{self._pool_path(vpc, subnet_id, pool_id)}/ip-allocations",
                "list_ip_allocations",
            )
        )

    @retry_on_error()
    def delete_ip_allocation(
        self, vpc: VPCInfo, subnet_id: str, pool_id: str, allocation_id: str
    ) -> None:
        """Delete one IP allocation. A missing allocation counts as deleted."""
        try:
            self._request(
                "DELETE",
                f"{self._pool_path(vpc, subnet_id, pool_id)}"
                f"/ip-allocations/{allocation_id}",
                "delete_ip_allocation",
            )
        except ResourceNotFoundError:
            logger.debug("IP allocation %s already gone", allocation_id)
