"""
Source registry
Ordered lookup of configured catalog sources by id, product URL and image host
"""

from typing import Dict, Iterable, List, Optional, Tuple
from urllib.parse import urlparse
import logging
import re

from config.settings import Settings, settings as default_settings
from config.sources import CatalogSourceConfig, build_source_configs
from sources.url_rules import URL_RULES, ParsedProductUrl, UrlRule
from utils.errors import UnknownSource

logger = logging.getLogger(__name__)


class SourceRegistry:
    """Sources in resolver priority order, each with its domain matcher and URL rule."""

    def __init__(self, configs: Iterable[CatalogSourceConfig], priority: Iterable[str] = ()):
        rank = {source_id: index for index, source_id in enumerate(priority)}
        ordered = sorted(configs, key=lambda config: rank.get(config.source_id, len(rank)))
        self._configs: Dict[str, CatalogSourceConfig] = {c.source_id: c for c in ordered}
        self._domains = {c.source_id: re.compile(c.domain_pattern) for c in ordered if c.domain_pattern}
        self._url_rules: Dict[str, UrlRule] = {}
        for config in ordered:
            rule = URL_RULES.get(config.url_rule)
            if rule is None:
                logger.warning(f"No URL rule registered for {config.source_id}")
                continue
            self._url_rules[config.source_id] = rule

    @classmethod
    def from_settings(cls, settings: Settings = default_settings) -> "SourceRegistry":
        return cls(build_source_configs(settings), settings.RESOLVER_SOURCE_PRIORITY)

    def __contains__(self, source_id: str) -> bool:
        return source_id in self._configs

    def __iter__(self):
        return iter(self._configs.values())

    def __len__(self) -> int:
        return len(self._configs)

    @property
    def source_ids(self) -> List[str]:
        return list(self._configs)

    def get(self, source_id: str) -> CatalogSourceConfig:
        try:
            return self._configs[source_id]
        except KeyError:
            raise UnknownSource(f"Unknown catalog source: {source_id}") from None

    def source_for_host(self, host: str) -> Optional[CatalogSourceConfig]:
        host = (host or "").lower()
        for source_id, pattern in self._domains.items():
            if pattern.search(host):
                return self._configs[source_id]
        return None

    def match_url(self, url: str) -> Optional[Tuple[CatalogSourceConfig, Optional[ParsedProductUrl]]]:
        """Source owning the URL's host and the parsed ids, or None for foreign or malformed hosts."""
        host = _hostname(url if "://" in url else f"https://{url}")
        config = self.source_for_host(host)
        if config is None:
            return None
        rule = self._url_rules.get(config.source_id)
        return config, rule(url) if rule else None

    def image_source(self, url: str) -> Optional[CatalogSourceConfig]:
        """Source whose allow-listed image host serves this URL."""
        if not url.lower().startswith("https://"):
            return None
        host = _hostname(url)
        if not host:
            return None
        for config in self._configs.values():
            if host in config.image_hosts:
                return config
        return None


def _hostname(url: str) -> Optional[str]:
    """Lower-cased host, or None when the URL cannot be parsed (e.g. an unclosed ``[``)."""
    try:
        return urlparse(url).hostname
    except ValueError:
        return None
