"""
Remote fact sources.

Batch lookup of facts that are missing from the local FactStore. This is the
only place the preparation path suspends. Sources never retry on their own:
a failure surfaces as RemoteFactLoadError and the prefetch scheduler decides
whether the whole task is attempted again.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any, Protocol, runtime_checkable

import httpx
from loguru import logger

from src.core.errors import InvalidFactId, RemoteFactLoadError
from src.core.models import Fact
from src.facts.fact_store import fact_from_id


@runtime_checkable
class RemoteFactSource(Protocol):
    """Async batch fetch of facts by id."""

    async def fetch_many(self, fact_ids: Sequence[str]) -> dict[str, Fact]: ...


def fact_from_payload(data: dict[str, Any]) -> Fact:
    """Parse one fact object from a remote response."""
    return Fact(
        id=str(data["id"]),
        operation=str(data["operation"]),
        operand1=int(data["operand1"]),
        operand2=int(data["operand2"]),
        result=int(data["result"]),
        tags=tuple(data.get("tags") or ()),
        difficulty=float(data.get("difficulty", 0.5)),
    )


class HttpFactSource:
    """Fetch facts from a fact service over HTTP (GET {base}/facts?ids=a,b,c)."""

    def __init__(
        self,
        api_url: str,
        timeout_seconds: float = 5.0,
        client: httpx.AsyncClient | None = None,
    ):
        """
        Initialize the HTTP fact source.

        Args:
            api_url: Base URL of the fact service
            timeout_seconds: Per-request timeout
            client: Optional preconfigured client (tests inject a MockTransport)
        """
        self.api_url = api_url.rstrip("/")
        self.client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout_seconds),
            follow_redirects=True,
        )

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()

    async def fetch_many(self, fact_ids: Sequence[str]) -> dict[str, Fact]:
        """
        Fetch a batch of facts.

        Ids the service does not know are simply absent from the result.

        Raises:
            RemoteFactLoadError: On transport errors, non-2xx responses or
                malformed payloads
        """
        if not fact_ids:
            return {}

        try:
            response = await self.client.get(
                f"{self.api_url}/facts",
                params={"ids": ",".join(fact_ids)},
            )
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPStatusError as e:
            raise RemoteFactLoadError(
                f"Fact service returned {e.response.status_code} for {len(fact_ids)} facts"
            ) from e
        except httpx.HTTPError as e:
            raise RemoteFactLoadError(f"Fact service unreachable: {e}") from e
        except ValueError as e:
            raise RemoteFactLoadError(f"Fact service returned invalid JSON: {e}") from e

        try:
            facts = [fact_from_payload(item) for item in payload.get("facts", [])]
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise RemoteFactLoadError(f"Malformed fact payload: {e}") from e

        requested = set(fact_ids)
        resolved = {fact.id: fact for fact in facts if fact.id in requested}
        logger.debug("Fetched {}/{} facts from {}", len(resolved), len(fact_ids), self.api_url)
        return resolved


class ComputedFactSource:
    """Materialise facts directly from their canonical ids."""

    async def fetch_many(self, fact_ids: Sequence[str]) -> dict[str, Fact]:
        resolved: dict[str, Fact] = {}
        for value in fact_ids:
            try:
                resolved[value] = fact_from_id(value)
            except InvalidFactId:
                logger.debug("Cannot compute fact {}", value)
        return resolved
