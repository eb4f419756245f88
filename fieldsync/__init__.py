"""Membership custom field normalisation and analysis."""

from .config import load_config, resolve_path
from .logging_setup import configure_logging
from .api_client import MembershipApiClient
from .catalogue import FieldEntry
from .extractor import CustomFieldExtractor, RawCustomField
from .field_config import FieldConfigStore, merge
from .intelligence import FieldIntelligenceAnalyzer
from .labels import generate_label
from .options import OptionLabelResolver
from .pipeline import FieldSyncPipeline
from .ratelimit import RateLimiter
from .vault import CredentialVault, TokenStore

__all__ = [
    "load_config",
    "resolve_path",
    "configure_logging",
    "MembershipApiClient",
    "FieldEntry",
    "CustomFieldExtractor",
    "RawCustomField",
    "FieldConfigStore",
    "merge",
    "FieldIntelligenceAnalyzer",
    "generate_label",
    "OptionLabelResolver",
    "FieldSyncPipeline",
    "RateLimiter",
    "CredentialVault",
    "TokenStore",
]
