"""
Points history feed client.

Posts persisted GraphQL queries to the remote feed and parses the responses
into explicit page structures. Transport problems and malformed bodies are
raised as distinct errors; an empty last page is not an error.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import requests

from ..core.errors import ParseFailure, TransportFailure
from ..storage.models import FeedCredentials, UsageEvent

logger = logging.getLogger(__name__)

DEFAULT_ENDPOINT = "https://poe.com/api/gql_POST"
DEFAULT_PAGE_SIZE = 20
DEFAULT_TIMEOUT = 30.0

HISTORY_QUERY_NAME = "PointsHistoryPageColumnViewerPaginationQuery"
HISTORY_QUERY_HASH = "9b68fe8ea0017e5d7701c93a5db8323136f9cb023d514f8595ae0dde220be6d1"
SETTINGS_QUERY_NAME = "settingsPageQuery"
SETTINGS_QUERY_HASH = "39ca34ece084fd810ccc8394942a2a584651433a57e7455ae80546a2e7893b5f"


@dataclass(frozen=True)
class FeedPage:
    """One page of the points history, newest event first."""
    events: List[UsageEvent]
    next_cursor: Optional[str]
    has_more: bool


@dataclass(frozen=True)
class PointsInfo:
    """Account-level points balance reported by the feed."""
    total_allotment: int
    current_balance: int
    next_grant_time: int  # microseconds since epoch
    expires_time: Optional[int]
    subscription_name: Optional[str]


def _require(container: Any, key: str, kind, path: str):
    """Fetch ``container[key]`` and check its type, raising ParseFailure otherwise."""
    if not isinstance(container, dict):
        raise ParseFailure(f"Expected object at '{path}'")
    if key not in container:
        raise ParseFailure(f"Missing required field '{path}.{key}'")
    value = container[key]
    # bool is an int subclass; a flag never stands in for a number
    if kind is int and isinstance(value, bool):
        raise ParseFailure(f"Field '{path}.{key}' must be int")
    if not isinstance(value, kind):
        name = kind.__name__ if isinstance(kind, type) else "/".join(k.__name__ for k in kind)
        raise ParseFailure(f"Field '{path}.{key}' must be {name}")
    return value


def _as_int(value: Any, path: str) -> int:
    if isinstance(value, bool):
        raise ParseFailure(f"Field '{path}' must be a number")
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    raise ParseFailure(f"Field '{path}' must be a number")


def parse_history_page(payload: Any) -> FeedPage:
    """Parse a points history response body.

    Args:
        payload: Decoded JSON body

    Returns:
        FeedPage with events in feed order

    Raises:
        ParseFailure: If the body doesn't match the expected shape
    """
    if isinstance(payload, dict) and payload.get("errors") and not payload.get("data"):
        raise ParseFailure(f"Feed returned errors: {payload['errors']}")

    data = _require(payload, "data", dict, "$")
    viewer = _require(data, "viewer", dict, "data")
    connection = _require(viewer, "pointsHistoryConnection", dict, "data.viewer")
    edges = _require(connection, "edges", list, "data.viewer.pointsHistoryConnection")
    page_info = _require(connection, "pageInfo", dict, "data.viewer.pointsHistoryConnection")

    events = []
    for i, edge in enumerate(edges):
        path = f"edges[{i}]"
        node = _require(edge, "node", dict, path)
        node_path = f"{path}.node"

        # Bot is optional: events for deleted bots come back with a null bot
        bot = node.get("bot")
        if bot is None:
            bot_name, bot_id = "", ""
        elif isinstance(bot, dict):
            bot_name = _require(bot, "displayName", str, f"{node_path}.bot")
            bot_id = _require(bot, "id", str, f"{node_path}.bot")
        else:
            raise ParseFailure(f"Field '{node_path}.bot' must be an object or null")

        cost = _as_int(_require(node, "pointCost", (int, float), node_path), f"{node_path}.pointCost")
        if cost < 0:
            raise ParseFailure(f"Field '{node_path}.pointCost' must be >= 0")

        events.append(UsageEvent(
            id=_require(node, "id", str, node_path),
            point_cost=cost,
            creation_time=_as_int(
                _require(node, "creationTime", (int, float), node_path),
                f"{node_path}.creationTime"
            ),
            bot_name=bot_name,
            bot_id=bot_id,
            cursor=edge.get("cursor") or "",
        ))

    has_more = _require(page_info, "hasNextPage", bool, "pageInfo")
    next_cursor = page_info.get("endCursor")
    if next_cursor is not None and not isinstance(next_cursor, str):
        raise ParseFailure("Field 'pageInfo.endCursor' must be a string or null")

    return FeedPage(events=events, next_cursor=next_cursor or None, has_more=has_more)


def parse_points_info(payload: Any) -> PointsInfo:
    """Parse a settings page response into the account's points balance."""
    data = _require(payload, "data", dict, "$")
    viewer = _require(data, "viewer", dict, "data")
    info = _require(viewer, "messagePointInfo", dict, "data.viewer")
    path = "data.viewer.messagePointInfo"

    subscription = viewer.get("subscription") or {}
    if not isinstance(subscription, dict):
        raise ParseFailure("Field 'data.viewer.subscription' must be an object or null")
    expires = subscription.get("expiresTime")
    product = subscription.get("subscriptionProduct") or {}

    return PointsInfo(
        total_allotment=_as_int(
            _require(info, "totalMessagePointAllotment", (int, float), path),
            f"{path}.totalMessagePointAllotment"
        ),
        current_balance=_as_int(
            _require(info, "subscriptionPointBalance", (int, float), path),
            f"{path}.subscriptionPointBalance"
        ),
        next_grant_time=_as_int(
            _require(info, "computePointNextGrantTime", (int, float), path),
            f"{path}.computePointNextGrantTime"
        ),
        expires_time=_as_int(expires, "subscription.expiresTime") if expires is not None else None,
        subscription_name=product.get("displayName") if isinstance(product, dict) else None,
    )


class PointsFeedClient:
    """HTTP client for the remote points feed.

    Credentials are passed per call and forwarded as headers unchanged.
    """

    def __init__(
        self,
        endpoint: str = DEFAULT_ENDPOINT,
        page_size: int = DEFAULT_PAGE_SIZE,
        timeout: float = DEFAULT_TIMEOUT,
        session: Optional[requests.Session] = None
    ):
        if page_size <= 0:
            raise ValueError("page_size must be > 0")
        self.endpoint = endpoint
        self.page_size = page_size
        self.timeout = timeout
        self.session = session or requests.Session()

    def fetch_page(self, credentials: FeedCredentials, cursor: Optional[str] = None) -> FeedPage:
        """Fetch one page of points history, newest first.

        Args:
            credentials: Feed credentials
            cursor: Continuation token from the previous page; omitted for the first page

        Returns:
            Parsed FeedPage

        Raises:
            TransportFailure: Feed unreachable or non-2xx
            ParseFailure: Body is not the expected shape
        """
        variables: Dict[str, Any] = {"limit": self.page_size}
        if cursor:
            variables["cursor"] = cursor
        payload = self._post(credentials, HISTORY_QUERY_NAME, HISTORY_QUERY_HASH, variables)
        page = parse_history_page(payload)
        logger.debug(
            "Fetched %d events (cursor=%s, has_more=%s)",
            len(page.events), cursor or "<first>", page.has_more
        )
        return page

    def fetch_points_info(self, credentials: FeedCredentials) -> PointsInfo:
        """Fetch the account's current points allotment and balance."""
        payload = self._post(credentials, SETTINGS_QUERY_NAME, SETTINGS_QUERY_HASH, {})
        return parse_points_info(payload)

    def _headers(self, credentials: FeedCredentials, query_name: str) -> Dict[str, str]:
        creds = credentials.with_defaults()
        return {
            "accept": "*/*",
            "content-type": "application/json",
            "cookie": creds.cookie,
            "origin": "https://poe.com",
            "referer": "https://poe.com/points_history",
            "poe-formkey": creds.form_key,
            "poe-queryname": query_name,
            "poe-revision": creds.revision,
            "poe-tag-id": creds.tag_id,
            "poe-tchannel": creds.channel,
            "poegraphql": "1",
        }

    def _post(
        self,
        credentials: FeedCredentials,
        query_name: str,
        query_hash: str,
        variables: Dict[str, Any]
    ) -> Any:
        body = {
            "queryName": query_name,
            "variables": variables,
            "extensions": {"hash": query_hash},
        }
        try:
            resp = self.session.post(
                self.endpoint,
                json=body,
                headers=self._headers(credentials, query_name),
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            raise TransportFailure(f"Feed request failed: {e}") from e

        if not 200 <= resp.status_code < 300:
            raise TransportFailure(
                f"Feed answered HTTP {resp.status_code} for {query_name}",
                status_code=resp.status_code,
            )

        try:
            return resp.json()
        except ValueError as e:
            raise ParseFailure(f"Feed response is not valid JSON: {e}") from e
