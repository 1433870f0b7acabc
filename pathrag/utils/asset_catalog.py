"""
Asset catalog - curated screenshots and diagrams for diagnostic nodes.

Read-only after load. An empty result is a valid answer: most nodes work
fine without a picture.
"""

import json
import logging
from pathlib import Path
from typing import Dict, List, Optional

from pathrag.contracts import RouterAsset

logger = logging.getLogger(__name__)

DEFAULT_ASSETS_PATH = Path(__file__).resolve().parent.parent / "data" / "router_assets.json"
GENERIC_VENDOR = "generic"


class AssetCatalog:

    def __init__(self, assets_path=None):
        """
        Args:
            assets_path: Path to asset JSON (defaults to bundled catalog)

        Raises:
            FileNotFoundError: If the file doesn't exist
            ValueError: If two assets share an asset_id
        """
        path = Path(assets_path) if assets_path else DEFAULT_ASSETS_PATH
        if not path.exists():
            raise FileNotFoundError(f"Asset catalog not found: {path}")

        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)

        base_url = data.get('base_url', '')
        self._assets: List[RouterAsset] = []
        self._by_id: Dict[str, RouterAsset] = {}

        for raw in data.get('assets', []):
            asset = RouterAsset.from_dict(raw, base_url=base_url)
            if asset.asset_id in self._by_id:
                raise ValueError(f"Duplicate asset id '{asset.asset_id}' in {path}")
            self._assets.append(asset)
            self._by_id[asset.asset_id] = asset

        logger.info(f"Asset catalog loaded with {len(self._assets)} assets")

    def assets_for(self, node_id: str, vendor_id: Optional[str] = None) -> List[RouterAsset]:
        """
        Assets attached to a node.

        Args:
            node_id: Diagnostic node id
            vendor_id: When given, only that vendor's assets plus generic ones

        Returns:
            List of assets in catalog order (possibly empty)
        """
        assets = [asset for asset in self._assets if asset.node_id == node_id]
        if vendor_id is None:
            return assets
        return [asset for asset in assets if asset.vendor in (vendor_id, GENERIC_VENDOR)]

    def assets_for_vendor(self, vendor_id: str) -> List[RouterAsset]:
        return [asset for asset in self._assets if asset.vendor in (vendor_id, GENERIC_VENDOR)]

    def get_asset(self, asset_id: str) -> Optional[RouterAsset]:
        return self._by_id.get(asset_id)

    def __len__(self) -> int:
        return len(self._assets)
