"""Build pipeline components from configuration for the command line tools."""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Optional

from .api_client import MembershipApiClient
from .config import DEFAULT_API_BASES, DEFAULT_API_VERSION, PACKAGE_ROOT, rate_limit_settings, resolve_path
from .extractor import CustomFieldExtractor
from .field_config import FieldConfigStore
from .options import LOOKUP_ENDPOINT, OptionLabelResolver
from .pipeline import FieldSyncPipeline, SyncSettings
from .ratelimit import RateLimiter
from .store import JsonFileStore, KeyValueStore
from .vault import CredentialVault, TokenStore

LOGGER = logging.getLogger(__name__)


def _data_directory(config: Dict[str, Any], base_dir: Optional[Path]) -> Path:
    storage_cfg = config.get("storage", {}) or {}
    return resolve_path(storage_cfg.get("data_directory", "data"), base=base_dir or PACKAGE_ROOT)


def create_store(config: Dict[str, Any], *, base_dir: Optional[Path] = None) -> JsonFileStore:
    storage_cfg = config.get("storage", {}) or {}
    data_dir = _data_directory(config, base_dir)
    return JsonFileStore(resolve_path(storage_cfg.get("store_file", "store.json"), base=data_dir))


def create_vault(config: Dict[str, Any]) -> CredentialVault:
    security_cfg = config.get("security", {}) or {}
    cipher_secret = security_cfg.get("cipher_secret")
    hmac_secret = security_cfg.get("hmac_secret")
    if not cipher_secret:
        LOGGER.warning("security.cipher_secret is not configured; the API token is not encrypted")
    return CredentialVault(cipher_secret, hmac_secret)


def create_token_store(config: Dict[str, Any], store: KeyValueStore) -> TokenStore:
    return TokenStore(store, create_vault(config))


def create_client(config: Dict[str, Any], token_store: Optional[TokenStore] = None) -> MembershipApiClient:
    api_cfg = config.get("api", {}) or {}
    base_urls = api_cfg.get("base_urls") or list(DEFAULT_API_BASES)
    return MembershipApiClient(
        base_urls=base_urls,
        api_version=api_cfg.get("api_version", DEFAULT_API_VERSION),
        verify_ssl=api_cfg.get("verify_ssl", True),
        timeout=int(api_cfg.get("timeout", 45)),
        rate_limit_per_minute=api_cfg.get("rate_limit_per_minute"),
        max_retries=int(api_cfg.get("max_retries", 3)),
        backoff_seconds=float(api_cfg.get("backoff_seconds", 15)),
        on_token_refresh=token_store.save if token_store else None,
    )


def create_config_store(config: Dict[str, Any], *, base_dir: Optional[Path] = None) -> FieldConfigStore:
    storage_cfg = config.get("storage", {}) or {}
    data_dir = _data_directory(config, base_dir)
    template = storage_cfg.get("template", "config/fields-config-default.json")
    return FieldConfigStore(
        resolve_path(storage_cfg.get("fields_config", "fields-config.json"), base=data_dir),
        resolve_path(template, base=base_dir or PACKAGE_ROOT) if template else None,
        retries=int(storage_cfg.get("write_retries", 3)),
        backoff=float(storage_cfg.get("write_backoff_seconds", 0.2)),
    )


def create_pipeline(config: Dict[str, Any], *, base_dir: Optional[Path] = None) -> FieldSyncPipeline:
    store = create_store(config, base_dir=base_dir)
    token_store = create_token_store(config, store)
    client = create_client(config, token_store)
    sync_cfg = config.get("sync", {}) or {}
    max_requests, window_seconds = rate_limit_settings(config, LOOKUP_ENDPOINT)
    resolver = OptionLabelResolver(
        client,
        store,
        RateLimiter(store),
        actor_key=str(sync_cfg.get("actor_key", "fieldsync-cli")),
        cache_ttl=sync_cfg.get("option_cache_ttl"),
        max_requests=max_requests,
        window_seconds=window_seconds,
    )
    return FieldSyncPipeline(
        client,
        CustomFieldExtractor(resolver, token_store),
        create_config_store(config, base_dir=base_dir),
        token_store,
        settings=SyncSettings.from_config(config),
    )
