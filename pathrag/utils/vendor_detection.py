"""
Vendor detection utilities.

Loads router vendor profiles and maps free text (a hint from the caller or
the user's answer to the brand question) onto a profile by keyword.
Anything unrecognised falls back to the generic profile rather than
escalating.
"""

import json
import logging
from pathlib import Path
from typing import Dict, Optional

from pathrag.contracts import VendorProfile

logger = logging.getLogger(__name__)

DEFAULT_VENDORS_PATH = Path(__file__).resolve().parent.parent / "data" / "vendor_profiles.json"
GENERIC_VENDOR_ID = "generic"


class VendorDetector:
    """Keyword-based vendor lookup over a fixed set of profiles."""

    def __init__(self, vendors_path=None):
        """
        Load vendor profiles.

        Args:
            vendors_path: Path to vendor profile JSON (defaults to bundled file)

        Raises:
            FileNotFoundError: If the file doesn't exist
            ValueError: If no generic fallback profile is defined
        """
        path = Path(vendors_path) if vendors_path else DEFAULT_VENDORS_PATH
        if not path.exists():
            raise FileNotFoundError(f"Vendor profiles not found: {path}")

        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)

        self.default_vendor_id = data.get('default_vendor_id', GENERIC_VENDOR_ID)
        self._profiles: Dict[str, VendorProfile] = {}
        for raw in data.get('profiles', []):
            profile = VendorProfile.from_dict(raw)
            self._profiles[profile.vendor_id] = profile

        if self.default_vendor_id not in self._profiles:
            raise ValueError(f"Default vendor profile '{self.default_vendor_id}' not defined in {path}")

        logger.info(f"Loaded {len(self._profiles)} vendor profiles")

    @property
    def generic_profile(self) -> VendorProfile:
        return self._profiles[self.default_vendor_id]

    def get_profile(self, vendor_id: str) -> Optional[VendorProfile]:
        return self._profiles.get(vendor_id)

    def match(self, text: Optional[str]) -> Optional[VendorProfile]:
        """
        Profile whose keywords (or vendor_id) appear in text.

        Returns:
            Matching profile, or None if nothing matched
        """
        if not text:
            return None

        normalized = text.strip().lower()
        if normalized in self._profiles:
            return self._profiles[normalized]

        for profile in self._profiles.values():
            if any(keyword in normalized for keyword in profile.detection_keywords):
                return profile

        return None

    def detect(self, text: Optional[str]) -> VendorProfile:
        """Like match(), but unrecognised brands resolve to the generic profile."""
        profile = self.match(text)
        if profile is None:
            logger.info(f"No vendor match for '{text}', using {self.default_vendor_id} profile")
            return self.generic_profile
        return profile
