"""Remote source distribution.

This module provides manifest retrieval, verification and installation of
sources published in a remote registry:

- manifest: the sources.json schema
- client: cached manifest retrieval with a fallback URL
- integrity / validator: checks that run before any code executes
- installer: install, update and uninstall workflows
- catalog: local, searchable view of manifest entries
"""

from extensions.catalog import CatalogStats, SourceCatalog
from extensions.client import CacheInfo, RegistryClient
from extensions.download import DownloadedCode, SourceDownloader, normalize_download_url
from extensions.installer import SourceInstaller, build_installer
from extensions.integrity import IntegrityVerifier, compute_digest, integrity_for, verify_integrity
from extensions.manifest import Manifest, SourceEntry
from extensions.validator import CodeValidator

__all__ = [
    "CacheInfo",
    "CatalogStats",
    "CodeValidator",
    "DownloadedCode",
    "IntegrityVerifier",
    "Manifest",
    "RegistryClient",
    "SourceCatalog",
    "SourceDownloader",
    "SourceEntry",
    "SourceInstaller",
    "build_installer",
    "compute_digest",
    "integrity_for",
    "normalize_download_url",
    "verify_integrity",
]
