"""Scan members, build the field catalogue and analyse it."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set, Tuple

from .catalogue import Catalogue
from .config import DEFAULT_CONSENT_FIELD_ID
from .errors import ConfigParseError, TokenDecryptionFailed
from .extractor import CustomFieldExtractor, RawCustomField, build_catalogue, has_consent, parse_custom_fields
from .field_config import FieldConfigStore, merge, merge_with_store
from .intelligence import FieldIntelligenceAnalyzer, FieldIntelligenceReport
from .labels import auto_generate_labels
from .options import option_id_from_ref
from .vault import TokenStore

LOGGER = logging.getLogger(__name__)

DETAIL_QUERY = {"query": "{*}"}
CUSTOM_FIELD_QUERY = {"limit": 100, "query": "{*}"}


@dataclass
class SyncSettings:
    consent_field_id: int = DEFAULT_CONSENT_FIELD_ID
    sync_all_members: bool = False
    target_custom_fields: Optional[List[int]] = None
    batch_size: int = 50

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "SyncSettings":
        sync_cfg = config.get("sync", {}) or {}
        targets = sync_cfg.get("target_custom_fields")
        return cls(
            consent_field_id=int(sync_cfg.get("consent_field_id", DEFAULT_CONSENT_FIELD_ID)),
            sync_all_members=bool(sync_cfg.get("sync_all_members", False)),
            target_custom_fields=[int(item) for item in targets] if targets else None,
            batch_size=int(sync_cfg.get("batch_size", 50)),
        )


@dataclass
class ScanStats:
    members_checked: int = 0
    members_with_consent: int = 0
    members_without_consent: int = 0
    errors: List[str] = field(default_factory=list)


@dataclass
class ScanResult:
    catalogue: Catalogue
    labelled: Catalogue
    report: FieldIntelligenceReport
    stats: ScanStats
    config_error: Optional[str] = None


class FieldSyncPipeline:
    """Run extraction, merge, labelling and analysis for a batch of members."""

    def __init__(
        self,
        client: Any,
        extractor: CustomFieldExtractor,
        config_store: FieldConfigStore,
        token_store: TokenStore,
        *,
        settings: Optional[SyncSettings] = None,
        analyzer: Optional[FieldIntelligenceAnalyzer] = None,
    ) -> None:
        self.client = client
        self.extractor = extractor
        self.config_store = config_store
        self.token_store = token_store
        self.settings = settings or SyncSettings()
        self.analyzer = analyzer or FieldIntelligenceAnalyzer()

    def _token(self) -> str:
        token = self.token_store.load()
        if not token:
            raise TokenDecryptionFailed("No usable API token is stored")
        return token

    def member_ids(self, token: str, *, offset: int = 0, limit: Optional[int] = None) -> List[int]:
        ids: List[int] = []
        for item in self.client.iter_list("member", {"limit": 100, "query": "{id}"}, token):
            member_id = option_id_from_ref(item.get("id") if isinstance(item, dict) else item)
            if member_id is not None:
                ids.append(member_id)
        end = offset + limit if limit is not None else None
        return ids[offset:end]

    def _custom_fields(self, path: str, token: str) -> List[RawCustomField]:
        return parse_custom_fields(self.client.iter_list(path, CUSTOM_FIELD_QUERY, token))

    def _contact(self, member: Dict[str, Any], token: str, stats: ScanStats) -> Optional[Dict[str, Any]]:
        contact_id = option_id_from_ref(member.get("contactDetails"))
        if contact_id is None:
            return None
        status, contact = self.client.get(f"contact-details/{contact_id}", DETAIL_QUERY, token)
        if status != 200 or not isinstance(contact, dict):
            LOGGER.warning("Contact details %s could not be loaded (status %s)", contact_id, status)
            stats.errors.append(f"Contact {contact_id}: status {status}")
            return None
        return contact

    def collect(self, *, offset: int = 0, limit: Optional[int] = None) -> Tuple[Catalogue, ScanStats]:
        """Scan members ``offset`` to ``offset + limit`` and return their fields."""
        token = self._token()
        stats = ScanStats()
        records: List[Catalogue] = []
        known: Set[str] = set()
        batch_limit = limit if limit is not None else self.settings.batch_size

        for member_id in self.member_ids(token, offset=offset, limit=batch_limit):
            stats.members_checked += 1
            status, member = self.client.get(f"member/{member_id}", DETAIL_QUERY, token)
            if status != 200 or not isinstance(member, dict):
                LOGGER.warning("Member %s could not be loaded (status %s)", member_id, status)
                stats.errors.append(f"Member {member_id}: status {status}")
                continue

            member_fields = self._custom_fields(f"member/{member_id}/custom-fields", token)
            if not self.settings.sync_all_members and not has_consent(
                member_fields, self.settings.consent_field_id
            ):
                stats.members_without_consent += 1
                continue
            stats.members_with_consent += 1

            contact = self._contact(member, token, stats)
            contact_fields: List[RawCustomField] = []
            if contact is not None and contact.get("id") is not None:
                contact_fields = self._custom_fields(f"contact-details/{contact['id']}/custom-fields", token)

            record = self.extractor.extract_record(
                member,
                contact,
                member_fields,
                contact_fields,
                self.settings.target_custom_fields,
                known=known,
            )
            known.update(record)
            records.append(record)

        LOGGER.info(
            "Checked %s members: %s with consent, %s without",
            stats.members_checked,
            stats.members_with_consent,
            stats.members_without_consent,
        )
        return build_catalogue(records), stats

    def process(self, discovered: Catalogue) -> ScanResult:
        """Merge ``discovered`` with the stored configuration and analyse it.

        An unreadable configuration is treated as empty (the template is not
        used) and reported through :attr:`ScanResult.config_error`.
        """
        config_error: Optional[str] = None
        try:
            merged = merge_with_store(discovered, self.config_store)
        except ConfigParseError as exc:
            LOGGER.error("Continuing without the stored field configuration: %s", exc)
            config_error = str(exc)
            merged = merge(discovered, {})
        return ScanResult(
            catalogue=merged,
            labelled=auto_generate_labels(merged),
            report=self.analyzer.analyze(merged),
            stats=ScanStats(),
            config_error=config_error,
        )

    def run(self, *, offset: int = 0, limit: Optional[int] = None) -> ScanResult:
        discovered, stats = self.collect(offset=offset, limit=limit)
        result = self.process(discovered)
        result.stats = stats
        if result.config_error:
            stats.errors.append(result.config_error)
        return result

    def scan_and_save(self, *, offset: int = 0, limit: Optional[int] = None) -> ScanResult:
        """Run the pipeline and persist the merged catalogue.

        Generated labels are only part of :attr:`ScanResult.labelled`; the
        stored configuration keeps user supplied labels only.
        """
        result = self.run(offset=offset, limit=limit)
        if result.config_error:
            LOGGER.error("Not overwriting unreadable field configuration %s", self.config_store.path)
            return result
        self.config_store.save(result.catalogue)
        return result
