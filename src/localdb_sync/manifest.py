"""
Dump manifest -- ``manifest.yaml`` next to the dumps.

Lists, per chain id, where the latest dump can be downloaded and when it
was produced, so consumers can bootstrap without running a sync.

    schema_version: 1
    networks:
      10:
        dump_url: https://.../Optimism.db.tar.gz
        dump_timestamp: '2026-01-01T00:00:00+00:00'
        seed_generation: 1

Before a run the published manifest is pulled into the database
directory and the dumps it lists are hydrated, so a fresh machine
resumes from the published state instead of the deployment block.
"""

from __future__ import annotations

import logging
import os
from datetime import datetime
from pathlib import Path
from typing import Mapping

import yaml
from pydantic import BaseModel, Field, ValidationError

from .constants import TEMP_SUFFIX
from .errors import HttpError, ManifestError
from .http import HttpClient

logger = logging.getLogger("localdb_sync.manifest")

CURRENT_SCHEMA_VERSION = 1
DEFAULT_SEED_GENERATION = 1


class ManifestEntry(BaseModel):
    """Where to fetch one chain's dump."""

    dump_url: str
    dump_timestamp: str
    seed_generation: int = DEFAULT_SEED_GENERATION


class Manifest(BaseModel):
    schema_version: int = CURRENT_SCHEMA_VERSION
    networks: dict[int, ManifestEntry] = Field(default_factory=dict)


def parse_manifest(text: str, source: str) -> Manifest:
    """Validate manifest YAML read from ``source`` (a path or URL)."""
    try:
        data = yaml.safe_load(text) or {}
        return Manifest.model_validate(data)
    except (yaml.YAMLError, ValidationError) as exc:
        raise ManifestError(f"failed to parse manifest {source}: {exc}") from exc


def load_manifest(path: Path) -> Manifest:
    """Read a manifest, or return an empty one if the file is missing.

    Raises:
        ManifestError: If the file exists but is not a valid manifest.
    """
    path = Path(path)
    if not path.exists():
        return Manifest()

    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise ManifestError(f"failed to parse manifest {path}: {exc}") from exc
    return parse_manifest(text, str(path))


def save_manifest(path: Path, manifest: Manifest) -> None:
    data = manifest.model_dump(mode="json")
    # keep chain ids as integer keys
    data["networks"] = {
        int(chain_id): entry for chain_id, entry in sorted(
            data["networks"].items(), key=lambda item: int(item[0])
        )
    }
    try:
        Path(path).write_text(
            yaml.safe_dump(data, default_flow_style=False, sort_keys=False),
            encoding="utf-8",
        )
    except OSError as exc:
        raise ManifestError(f"failed to write manifest to {path}: {exc}") from exc


def _check_schema(manifest: Manifest) -> None:
    if manifest.schema_version != CURRENT_SCHEMA_VERSION:
        raise ManifestError(
            f"unsupported manifest schema version {manifest.schema_version}; "
            f"expected {CURRENT_SCHEMA_VERSION}"
        )


def update_manifest(
    path: Path,
    chain_id: int,
    dump_url: str,
    timestamp: datetime,
) -> Manifest:
    """Record a fresh dump for ``chain_id``, keeping every other entry.

    The chain's seed generation is preserved if it already has an entry.

    Raises:
        ManifestError: On an unsupported schema version or unreadable file.
    """
    manifest = load_manifest(path)
    _check_schema(manifest)

    previous = manifest.networks.get(chain_id)
    manifest.networks[chain_id] = ManifestEntry(
        dump_url=dump_url,
        dump_timestamp=timestamp.isoformat(),
        seed_generation=previous.seed_generation if previous else DEFAULT_SEED_GENERATION,
    )
    save_manifest(path, manifest)
    logger.info("Updated manifest entry for chain %d at %s", chain_id, path)
    return manifest


def bump_seed_generation(path: Path, chain_id: int) -> tuple[int, int]:
    """Increment the seed generation of ``chain_id``.

    Consumers holding a dump from an older generation discard it and
    re-download.

    Returns:
        (previous, next) seed generations.

    Raises:
        ManifestError: If the chain has no entry or the file is invalid.
    """
    manifest = load_manifest(path)
    _check_schema(manifest)

    entry = manifest.networks.get(chain_id)
    if entry is None:
        raise ManifestError(f"chain {chain_id} has no entry in manifest {path}")

    previous = entry.seed_generation
    manifest.networks[chain_id] = entry.model_copy(update={"seed_generation": previous + 1})
    save_manifest(path, manifest)
    logger.info(
        "Bumped seed generation for chain %d from %d to %d", chain_id, previous, previous + 1,
    )
    return previous, previous + 1


def download_manifest(http: HttpClient, url: str, path: Path) -> Manifest:
    """Pull the published manifest into ``path``.

    When nothing is published at ``url`` the local manifest is kept, or
    an empty one is used if there is none.

    Raises:
        ManifestError: If the published manifest is invalid.
    """
    path = Path(path)
    logger.info("Fetching manifest from %s", url)
    try:
        text = http.fetch_text(url)
    except HttpError as exc:
        logger.info("No manifest available at %s; starting with local manifest (%s)", url, exc)
        return load_manifest(path)

    manifest = parse_manifest(text, url)
    _check_schema(manifest)
    path.parent.mkdir(parents=True, exist_ok=True)
    save_manifest(path, manifest)
    return manifest


def download_dumps(
    http: HttpClient,
    manifest: Manifest,
    destinations: Mapping[int, Path],
) -> list[Path]:
    """Download the published dump of every chain in ``destinations``.

    Chains missing from the manifest are left alone, and so is any
    destination that already holds a local dump.

    Returns:
        Paths of the dumps that were downloaded.

    Raises:
        HttpError: If a listed dump cannot be fetched.
    """
    if not manifest.networks:
        logger.info("Manifest has no networks; skipping dump hydration.")
        return []

    downloaded = []
    for chain_id, destination in destinations.items():
        entry = manifest.networks.get(chain_id)
        if entry is None:
            continue
        destination = Path(destination)
        if destination.exists():
            logger.info("Keeping local dump %s for chain %d", destination, chain_id)
            continue

        logger.info("Downloading dump for chain %d from %s", chain_id, entry.dump_url)
        data = http.fetch_binary(entry.dump_url)
        destination.parent.mkdir(parents=True, exist_ok=True)
        temp = destination.with_name(destination.name + TEMP_SUFFIX)
        temp.write_bytes(data)
        os.replace(temp, destination)
        downloaded.append(destination)
    return downloaded
