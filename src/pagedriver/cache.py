"""Per-domain embed workflow configurations fetched from the companion app."""

from __future__ import annotations

import logging
from typing import Any
from urllib.parse import urlparse

import httpx

from pagedriver.config import EmbedConfig

logger = logging.getLogger(__name__)


class DomainConfigCache:
    """Domain -> list of embed workflow configurations.

    Only successful fetches are stored, so a failed lookup is retried the
    next time the domain is asked for.
    """

    def __init__(self) -> None:
        self._entries: dict[str, list[dict[str, Any]]] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, domain: str) -> bool:
        return domain in self._entries

    def get(self, domain: str) -> list[dict[str, Any]] | None:
        return self._entries.get(domain)

    def put(self, domain: str, configs: list[dict[str, Any]]) -> None:
        self._entries[domain] = configs

    def invalidate(self, domain: str) -> bool:
        return self._entries.pop(domain, None) is not None

    def clear(self) -> None:
        self._entries.clear()


def matches_org_repo(url: str, embed: dict[str, Any] | None) -> bool:
    """Whether *url* falls under the ``org``/``repo`` an embed config is scoped to.

    Configs without an org or repo match every page of their domain; otherwise
    the first two path segments are compared case-insensitively.
    """
    embed = embed or {}
    org = embed.get("org")
    repo = embed.get("repo")
    if not org and not repo:
        return True
    try:
        path = urlparse(url).path
    except ValueError:
        return False
    parts = [p for p in path.split("/") if p]
    if org and (len(parts) < 1 or parts[0].lower() != org.lower()):
        return False
    if repo and (len(parts) < 2 or parts[1].lower() != repo.lower()):
        return False
    return True


class EmbedConfigService:
    def __init__(
        self,
        config: EmbedConfig,
        cache: DomainConfigCache | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.config = config
        self.cache = cache if cache is not None else DomainConfigCache()
        self._client = client

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.config.api_url,
                timeout=httpx.Timeout(self.config.timeout),
            )
        return self._client

    async def fetch(self, domain: str) -> list[dict[str, Any]]:
        cached = self.cache.get(domain)
        if cached is not None:
            return cached
        if not self.config.enabled:
            return []

        try:
            response = await self._get_client().get(
                "/api/embed-workflows", params={"domain": domain}
            )
            response.raise_for_status()
            configs = response.json().get("workflows") or []
        except httpx.HTTPStatusError as exc:
            logger.warning(
                f"Embed config lookup for {domain} failed: HTTP {exc.response.status_code}"
            )
            return []
        except (httpx.RequestError, ValueError) as exc:
            logger.warning(f"Embed config lookup for {domain} failed: {exc}")
            return []

        self.cache.put(domain, configs)
        logger.debug(f"Cached {len(configs)} embed config(s) for {domain}")
        return configs

    async def configs_for_url(self, url: str) -> list[dict[str, Any]]:
        domain = urlparse(url).hostname
        if not domain:
            return []
        configs = await self.fetch(domain)
        return [c for c in configs if matches_org_repo(url, c.get("embed"))]

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
