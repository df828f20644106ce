"""
Asset Resolver.

Maps the asset requests found in a job's settings (ISO, HDD_1, REPO_0, ...)
to asset files that actually exist, preferring copies produced by Chained
ancestors ("%08d-<name>" of the ancestor id) over the public name.
"""

import logging
import re

from src.infra.data_paths import locate_asset

from .entities import Asset
from .graph import DependencyGraph
from .persistence import PersistenceAdapter


logger = logging.getLogger(__name__)

# (setting key pattern, asset type)
ASSET_SETTING_PATTERNS = (
    (re.compile(r"^ISO(_\d+)?$"), "iso"),
    (re.compile(r"^HDD_\d+$"), "hdd"),
    (re.compile(r"^UEFI_PFLASH_VARS$"), "hdd"),
    (re.compile(r"^REPO_\d+$"), "repo"),
    (re.compile(r"^(ASSET_\d+|KERNEL|INITRD)$"), "other"),
)


def parse_assets_from_settings(settings: dict) -> dict:
    """
    Extract asset requests from a settings mapping.

    Returns:
        {setting key: {"type": ..., "name": ...}}
    """
    assets = {}
    for key, value in settings.items():
        if not value:
            continue
        for pattern, asset_type in ASSET_SETTING_PATTERNS:
            if pattern.match(key):
                assets[key] = {"type": asset_type, "name": value}
                break
    return assets


class AssetResolver:
    """Resolves and links assets for one job at a time."""

    def __init__(self, persistence: PersistenceAdapter, graph: DependencyGraph):
        self.persistence = persistence
        self.graph = graph

    def find_asset(self, asset_type: str, name: str, ancestor_ids: list[int]):
        """First existing candidate name, ancestors first, or None."""
        candidates = [f"{ancestor_id:08d}-{name}" for ancestor_id in ancestor_ids]
        candidates.append(name)
        for candidate in candidates:
            if locate_asset(asset_type, candidate, must_exist=True) is not None:
                return candidate
        return None

    def register_assets_from_settings(self, job_id: int, settings: dict) -> dict:
        """
        Resolve the assets requested by settings and link them to job_id.

        Assets not available yet are not registered.

        Returns:
            {setting key: resolved file name} for every registered asset
        """
        requests = parse_assets_from_settings(settings)
        if not requests:
            return {}

        ancestor_ids = self.graph.chained_ancestors(job_id)
        updated = {}
        resolved: list[Asset] = []

        for key, request in requests.items():
            if "/" in request["name"]:
                logger.info(f"Not registering asset {request['name']} containing /")
                continue
            name = self.find_asset(request["type"], request["name"], ancestor_ids)
            if name is None:
                logger.debug(f"Asset {request['type']}/{request['name']} of job {job_id} not available yet")
                continue
            updated[key] = name
            # find-or-create: ISO_1 and ISO_2 may name the same file
            resolved.append(self.persistence.find_or_create_asset(request["type"], name))

        for asset in resolved:
            self.persistence.link_asset(job_id, asset.id)

        return updated
