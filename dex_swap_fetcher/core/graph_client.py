"""
Thin GraphQL-over-HTTP client for The Graph endpoints.

One instance per subgraph endpoint; instances own their `requests.Session`
and are passed explicitly into the harvester.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, List, Optional

import requests

logger = logging.getLogger(__name__)


class GraphQLError(RuntimeError):
    """The endpoint answered, but with a GraphQL `errors` payload."""

    def __init__(self, errors: List[Any]):
        self.errors = errors
        messages = []
        for err in errors:
            messages.append(err.get("message", str(err)) if isinstance(err, dict) else str(err))
        super().__init__("; ".join(messages) or "GraphQL error")


class GraphClient:
    def __init__(
        self,
        url: str,
        timeout: float = 30.0,
        max_attempts: int = 1,
        session: Optional[requests.Session] = None,
    ):
        self.url = url
        self.timeout = timeout
        self.max_attempts = max(1, int(max_attempts))
        self.session = session or requests.Session()
        self.session.headers.update({"Content-Type": "application/json"})

    def request(self, query: str, variables: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        payload = {"query": query, "variables": variables or {}}
        for attempt in range(self.max_attempts):
            try:
                r = self.session.post(self.url, json=payload, timeout=self.timeout)
                r.raise_for_status()
                data = r.json()
                if data.get("errors"):
                    raise GraphQLError(data["errors"])
                return data.get("data") or {}
            except GraphQLError:
                raise
            except (requests.RequestException, ValueError):
                if attempt == self.max_attempts - 1:
                    raise
                logger.debug("GraphQL request failed (attempt %d/%d), retrying", attempt + 1, self.max_attempts)
                time.sleep(1.0 + attempt * 0.5)
        raise RuntimeError("GraphQL request failed after retries")

    def close(self) -> None:
        self.session.close()
