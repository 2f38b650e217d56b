"""Source installer.

Composes manifest resolution, download, integrity verification, static
validation, materialization, shape validation and registration into
install / update / uninstall workflows with progress reporting.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable

from extensions.client import RegistryClient
from extensions.download import DownloadedCode, SourceDownloader
from extensions.integrity import IntegrityVerifier
from extensions.manifest import SourceEntry, is_newer
from extensions.validator import CodeValidator
from plugins import CORE_VERSION
from plugins.base import BaseSource
from plugins.errors import InstanceShapeError, LoadError, is_retryable
from plugins.loader import LoadAttempt, LoadState, RuntimeLoader
from plugins.registry import PluginRegistry
from plugins.shape import assert_plugin_shape

if TYPE_CHECKING:
    from pipeline.config import Config

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, str], None]

DEFAULT_CODE_CACHE_TTL = 24 * 60 * 60


@dataclass
class CachedCode:
    """Verified code kept for reinstalls of the same version."""

    code: DownloadedCode
    version: str
    expires_at: float


class SourceInstaller:
    """Install and manage sources from the remote registry.

    Example:
        >>> installer = SourceInstaller(RegistryClient(), PluginRegistry())
        >>> source = await installer.install("mangadex", on_progress=print_progress)
        >>> installer.uninstall("mangadex")
    """

    def __init__(
        self,
        client: RegistryClient,
        registry: PluginRegistry,
        loader: RuntimeLoader | None = None,
        validator: CodeValidator | None = None,
        verifier: IntegrityVerifier | None = None,
        downloader: SourceDownloader | None = None,
        code_cache_ttl: float = DEFAULT_CODE_CACHE_TTL,
        clock: Callable[[], float] = time.monotonic,
        core_version: str = CORE_VERSION,
    ):
        """Initialize the installer.

        Args:
            client: Registry client used to resolve manifest entries.
            registry: Registry that receives installed sources.
            loader: Runtime loader (detects the runtime when omitted).
            validator: Static code validator.
            verifier: Integrity verifier.
            downloader: Code downloader.
            code_cache_ttl: Lifetime of cached verified code in seconds.
            clock: Monotonic time source for the code cache.
            core_version: Core version checked against manifest constraints.
        """
        self.client = client
        self.registry = registry
        self.loader = loader or RuntimeLoader()
        self.validator = validator or CodeValidator()
        self.verifier = verifier or IntegrityVerifier()
        self.downloader = downloader or SourceDownloader()
        self.code_cache_ttl = code_cache_ttl
        self.core_version = core_version
        self._clock = clock
        self._code_cache: dict[str, CachedCode] = {}
        self._attempts: dict[str, LoadAttempt] = {}

    async def install(
        self,
        source_id: str,
        on_progress: ProgressCallback | None = None,
        *,
        version: str | None = None,
    ) -> BaseSource:
        """Install a source from the registry.

        Code is verified and validated before it is executed. Any failure
        leaves the registry untouched for this id and propagates unchanged.

        Args:
            source_id: Manifest id of the source.
            on_progress: Called with (percent, status) at fixed milestones.
            version: Specific published version (defaults to the manifest version).

        Returns:
            The registered source instance.

        Raises:
            NotFoundError: Unknown id or version.
            NetworkError: Download failed.
            IntegrityError: Digest mismatch.
            StructuralError: Code is not a source module.
            SecurityError: Code contains a denylisted pattern.
            LoadError: Code could not be materialized or constructed.
            InstanceShapeError: Instance lacks a required member.
        """
        attempt = LoadAttempt(source_id)
        self._attempts[source_id] = attempt

        def report(percent: int, status: str) -> None:
            logger.debug("[%s] %d%% %s", source_id, percent, status)
            if on_progress is not None:
                on_progress(percent, status)

        try:
            report(0, "Starting installation")
            entry = await self.client.require_source(source_id)
            self._check_core_version(entry)
            target_version = version or entry.version

            report(20, "Downloading source code")
            code = self._get_cached_code(source_id, target_version)
            if code is None:
                url = entry.download_url(version)
                code = await self.downloader.download(url, source_id=source_id)
            else:
                logger.debug("Using cached code for %s v%s", source_id, target_version)
            attempt.advance(LoadState.DOWNLOADED)

            self.verifier.verify(code.content, entry.integrity, source_id=source_id)
            attempt.advance(LoadState.VERIFIED)
            report(50, "Integrity verified")

            text = code.text
            self.validator.validate(text, source_id=source_id)
            attempt.advance(LoadState.VALIDATED)
            report(70, "Code validated")

            report(80, "Instantiating source")
            attempt.advance(LoadState.MATERIALIZING)
            source = await self.loader.load(text, source_id, target_version)
            assert_plugin_shape(source)
            if source.id != entry.id:
                raise InstanceShapeError(
                    f"Source id '{source.id}' does not match manifest id '{entry.id}'",
                    member="id",
                    source_id=source_id,
                )
            attempt.advance(LoadState.INSTANTIATED)

            report(90, "Registering source")
            self.registry.register(source)
            attempt.advance(LoadState.REGISTERED)
            self._cache_code(source_id, code, target_version)

            report(100, "Installation complete")
        except Exception as e:
            attempt.fail(e)
            logger.error("Failed to install %s: %s", source_id, e)
            raise

        logger.info("Installed source %s v%s", source.id, source.version)
        return source

    async def update(self, source_id: str, on_progress: ProgressCallback | None = None) -> BaseSource:
        """Reinstall a source from the current manifest."""
        self.uninstall(source_id)
        return await self.install(source_id, on_progress)

    def uninstall(self, source_id: str) -> bool:
        """Remove a source from the registry and drop its cached code.

        Returns:
            True if the source was registered.
        """
        self.clear_code_cache(source_id)
        return self.registry.unregister(source_id)

    async def install_many(
        self,
        source_ids: list[str],
        on_progress: Callable[[str, int, str], None] | None = None,
    ) -> list[BaseSource]:
        """Install several sources concurrently.

        Individual failures are logged; the call fails only when every
        install failed.

        Raises:
            LoadError: If no source could be installed.
        """
        if not source_ids:
            return []

        def progress_for(source_id: str) -> ProgressCallback | None:
            if on_progress is None:
                return None
            return lambda percent, status: on_progress(source_id, percent, status)

        outcomes = await asyncio.gather(
            *(self.install(source_id, progress_for(source_id)) for source_id in source_ids),
            return_exceptions=True,
        )

        installed: list[BaseSource] = []
        reasons: list[str] = []
        for source_id, outcome in zip(source_ids, outcomes):
            if isinstance(outcome, BaseException):
                reasons.append(f"{source_id}: {outcome}")
                hint = " (retryable)" if is_retryable(outcome) else ""
                logger.warning("Failed to install %s%s: %s", source_id, hint, outcome)
            else:
                installed.append(outcome)

        if not installed:
            raise LoadError(f"Failed to install any sources: {'; '.join(reasons)}", reasons=reasons)
        return installed

    async def check_updates(self) -> list[tuple[BaseSource, SourceEntry]]:
        """Find registered sources with a newer manifest version."""
        manifest = await self.client.fetch_manifest()
        updates = []
        for source in self.registry.list():
            entry = manifest.get(source.id)
            if entry is not None and is_newer(entry.version, source.version):
                updates.append((source, entry))
        return updates

    def last_attempt(self, source_id: str) -> LoadAttempt | None:
        return self._attempts.get(source_id)

    def clear_code_cache(self, source_id: str | None = None) -> None:
        if source_id is None:
            self._code_cache.clear()
        else:
            self._code_cache.pop(source_id, None)

    def _get_cached_code(self, source_id: str, version: str) -> DownloadedCode | None:
        cached = self._code_cache.get(source_id)
        if cached is None:
            return None
        if cached.version != version or self._clock() >= cached.expires_at:
            self._code_cache.pop(source_id, None)
            return None
        return cached.code

    def _cache_code(self, source_id: str, code: DownloadedCode, version: str) -> None:
        self._code_cache[source_id] = CachedCode(
            code=code,
            version=version,
            expires_at=self._clock() + self.code_cache_ttl,
        )

    def _check_core_version(self, entry: SourceEntry) -> None:
        if not entry.is_compatible_with(self.core_version):
            max_version = entry.metadata.max_core_version or "any"
            logger.warning(
                "Source %s requires core %s..%s, running %s",
                entry.id,
                entry.metadata.min_core_version,
                max_version,
                self.core_version,
            )


def build_installer(config: Config | None = None, registry: PluginRegistry | None = None) -> SourceInstaller:
    """Wire an installer from configuration.

    Args:
        config: Configuration (loaded from sources.toml/env when omitted).
        registry: Registry to install into (a new one when omitted).
    """
    from pipeline.config import get_config

    config = config or get_config()

    client = RegistryClient(
        registry_url=config.registry.url,
        fallback_url=config.registry.fallback_url,
        cache_duration=config.registry.cache_duration,
        timeout=config.registry.timeout,
    )
    loader = RuntimeLoader(
        runtime=config.loader.runtime,
        load_timeout=config.loader.load_timeout,
    )
    downloader = SourceDownloader(timeout=config.loader.download_timeout)

    return SourceInstaller(
        client=client,
        registry=registry if registry is not None else PluginRegistry(),
        loader=loader,
        downloader=downloader,
        code_cache_ttl=config.loader.code_cache_ttl,
    )
