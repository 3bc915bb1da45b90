"""Team roster loading.

Sources are tried in order and the first one yielding at least one name
wins:

- JSON: ``{"members": ["Alice", "Bob"]}``
- YAML: ``members: [Alice, Bob]``
- plain text: one name per line

Any failure falls back to the built-in roster. Member ids are positional
(``member-1``, ``member-2``, ...).
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Iterable, Optional

import yaml

from team_order.session.models import Participant

logger = logging.getLogger(__name__)

DEFAULT_MEMBER_COUNT = 9


def default_roster() -> list[Participant]:
    return [
        Participant(id=f"member-{index}", name=f"Member {index}")
        for index in range(1, DEFAULT_MEMBER_COUNT + 1)
    ]


def _to_roster(names: Iterable[Any]) -> list[Participant]:
    cleaned = [str(name).strip() for name in names if name is not None and str(name).strip()]
    return [Participant(id=f"member-{index}", name=name) for index, name in enumerate(cleaned, 1)]


def parse_roster(path: Path) -> list[Participant]:
    """Parse one roster file; raises on unreadable or malformed input."""
    text = path.read_text(encoding="utf-8")
    suffix = path.suffix.lower()
    if suffix in (".json", ".yaml", ".yml"):
        data = json.loads(text) if suffix == ".json" else yaml.safe_load(text)
        if not isinstance(data, dict) or not isinstance(data.get("members"), list):
            raise ValueError(f"{path} has no 'members' list")
        return _to_roster(data["members"])
    return _to_roster(text.splitlines())


def load_roster(paths: Iterable[Optional[Path]] = ()) -> list[Participant]:
    for path in paths:
        if path is None:
            continue
        try:
            members = parse_roster(path)
        except (OSError, ValueError, yaml.YAMLError) as exc:
            logger.warning("Could not load roster from %s: %s", path, exc)
            continue
        if members:
            logger.debug("Loaded %d member(s) from %s", len(members), path)
            return members
    logger.info("Using the built-in roster")
    return default_roster()
