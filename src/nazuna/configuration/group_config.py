"""
Per-group moderation configuration stored as flat JSON documents.

Each group has one document at ``<groups_dir>/<group_id>.json``. Documents
are edited by the command handlers (outside this package) and by hand, so
the store never keeps an in-memory copy: every membership event reads the
document again and a missing or unreadable document means "no policy".
"""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

from nazuna.util.logger import get_logger

logger = get_logger("group_config")


@dataclass(slots=True)
class BlacklistEntry:
    reason: str = ""


@dataclass(slots=True)
class ExitSettings:
    enabled: bool = False
    text: str = ""
    image: Optional[str] = None


@dataclass(slots=True)
class GroupConfig:
    """Moderation switches and templates for one group."""

    group_id: str
    x9: bool = False
    antifake: bool = False
    antipt: bool = False
    blacklist: Dict[str, BlacklistEntry] = field(default_factory=dict)
    bemvindo: bool = False
    textbv: str = ""
    welcome_image: Optional[str] = None
    exit: ExitSettings = field(default_factory=ExitSettings)
    raw: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_document(cls, group_id: str, document: Dict[str, Any]) -> "GroupConfig":
        """Build a config from a parsed JSON document, ignoring unknown keys."""
        blacklist: Dict[str, BlacklistEntry] = {}
        raw_blacklist = document.get("blacklist")
        if isinstance(raw_blacklist, dict):
            for participant, entry in raw_blacklist.items():
                if not entry:
                    continue
                reason = entry.get("reason", "") if isinstance(entry, dict) else ""
                blacklist[str(participant)] = BlacklistEntry(reason=str(reason or ""))

        welcome = document.get("welcome")
        welcome_image = welcome.get("image") if isinstance(welcome, dict) else None

        raw_exit = document.get("exit")
        if isinstance(raw_exit, dict):
            exit_settings = ExitSettings(
                enabled=bool(raw_exit.get("enabled", False)),
                text=str(raw_exit.get("text") or ""),
                image=raw_exit.get("image") or None,
            )
        else:
            exit_settings = ExitSettings()

        return cls(
            group_id=group_id,
            x9=bool(document.get("x9", False)),
            antifake=bool(document.get("antifake", False)),
            antipt=bool(document.get("antipt", False)),
            blacklist=blacklist,
            bemvindo=bool(document.get("bemvindo", False)),
            textbv=str(document.get("textbv") or ""),
            welcome_image=welcome_image or None,
            exit=exit_settings,
            raw=document,
        )


class GroupConfigStore:
    """Read-only access to the per-group JSON documents."""

    def __init__(self, groups_dir: Path) -> None:
        self.groups_dir = Path(groups_dir)

    def path_for(self, group_id: str) -> Path:
        return self.groups_dir / f"{group_id}.json"

    def _read_document(self, path: Path) -> Optional[Dict[str, Any]]:
        try:
            with path.open("r", encoding="utf-8") as f:
                document = json.load(f)
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as exc:
            logger.debug("[GROUP CONFIG] Ignoring unreadable config %s: %s", path, exc)
            return None
        return document if isinstance(document, dict) else None

    async def load_group_config(self, group_id: str) -> Optional[GroupConfig]:
        """
        Read the group's document from disk.

        Returns ``None`` when the document is missing, is not valid JSON or is
        not a JSON object.
        """
        document = await asyncio.to_thread(self._read_document, self.path_for(group_id))
        if document is None:
            return None
        return GroupConfig.from_document(group_id, document)
