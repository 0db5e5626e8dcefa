"""Detection signatures for tools, services and development activity."""

from .loader import SignatureLoadError, SignatureLoader, load_catalog, load_default_catalog, merge_catalogs
from .models import ActivityPatterns, ServiceDomain, SignatureCatalog, ToolSignature

__all__ = [
    "ActivityPatterns",
    "ServiceDomain",
    "SignatureCatalog",
    "SignatureLoadError",
    "SignatureLoader",
    "ToolSignature",
    "load_catalog",
    "load_default_catalog",
    "merge_catalogs",
]
