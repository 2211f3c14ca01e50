"""
Local State Storage

Small JSON files kept next to the app:
- the access token and the time it was obtained
- family names and member counts, so they survive restarts
- the id of the spreadsheet bills are written to

Passing path=None keeps the state in memory only (used in tests and when
no state directory is configured).
"""

import json
from pathlib import Path
from typing import Optional

import structlog

from meterbill.models.billing import (
    FAMILY_ORDER,
    FamilyConfig,
    default_families,
)


logger = structlog.get_logger(__name__)


class JsonFileStore:
    """A single JSON document on disk (or in memory)."""

    def __init__(self, path: Optional[Path] = None):
        self._path = Path(path) if path is not None else None
        self._memory: Optional[dict] = None

    def load(self) -> Optional[dict]:
        if self._path is None:
            return dict(self._memory) if self._memory is not None else None
        if not self._path.exists():
            return None
        with self._path.open("r", encoding="utf-8") as f:
            data = json.load(f)
        return data if isinstance(data, dict) else None

    def save(self, data: dict) -> None:
        if self._path is None:
            self._memory = dict(data)
            return
        self._path.parent.mkdir(parents=True, exist_ok=True)
        with self._path.open("w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)

    def clear(self) -> None:
        self._memory = None
        if self._path is not None and self._path.exists():
            self._path.unlink()


class TokenStore(JsonFileStore):
    """Persisted {access_token, obtained_at}."""

    FILENAME = "session_token.json"

    @classmethod
    def in_dir(cls, state_dir: Path) -> 'TokenStore':
        return cls(Path(state_dir) / cls.FILENAME)


class FamilyPreferencesStore(JsonFileStore):
    """Persisted family display names and member counts."""

    FILENAME = "family_preferences.json"

    @classmethod
    def in_dir(cls, state_dir: Path) -> 'FamilyPreferencesStore':
        return cls(Path(state_dir) / cls.FILENAME)

    def load_families(self) -> list[FamilyConfig]:
        """
        Saved families in FAMILY_ORDER, falling back to defaults.

        Only names and member counts are taken from the file; an unreadable
        file or entry keeps the default for that family.
        """
        families = default_families()
        try:
            saved = self.load() or {}
        except (OSError, ValueError) as e:
            logger.warning("family_preferences_unreadable", error=str(e))
            return families

        merged = []
        for family in families:
            entry = saved.get(family.family_id)
            if not isinstance(entry, dict):
                merged.append(family)
                continue
            try:
                merged.append(FamilyConfig(
                    family_id=family.family_id,
                    display_name=entry.get("name") or family.display_name,
                    member_count=entry.get("members") or family.member_count,
                ))
            except ValueError as e:
                logger.warning(
                    "family_preference_invalid",
                    family_id=family.family_id,
                    error=str(e),
                )
                merged.append(family)
        return merged

    def save_families(self, families: list[FamilyConfig]) -> None:
        by_id = {family.family_id: family for family in families}
        self.save({
            family_id: {
                "name": by_id[family_id].display_name,
                "members": by_id[family_id].member_count,
            }
            for family_id in FAMILY_ORDER
            if family_id in by_id
        })


class SpreadsheetSelectionStore(JsonFileStore):
    """The spreadsheet last chosen for bills."""

    FILENAME = "spreadsheet.json"

    @classmethod
    def in_dir(cls, state_dir: Path) -> 'SpreadsheetSelectionStore':
        return cls(Path(state_dir) / cls.FILENAME)

    def load_selected(self) -> Optional[str]:
        try:
            saved = self.load() or {}
        except (OSError, ValueError) as e:
            logger.warning("spreadsheet_selection_unreadable", error=str(e))
            return None
        spreadsheet_id = saved.get("spreadsheet_id")
        return spreadsheet_id if isinstance(spreadsheet_id, str) and spreadsheet_id else None

    def save_selected(self, spreadsheet_id: str) -> None:
        self.save({"spreadsheet_id": spreadsheet_id})
