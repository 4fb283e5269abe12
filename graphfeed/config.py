"""
GraphFeed Configuration

Process-level tunables that are NOT user settings (user settings live in the
host's settings store and are reconciled by SettingsStore).

Loads from config/graphfeed.json when present.
"""

from __future__ import annotations
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Optional
import json

DEFAULT_CONFIG_PATH = Path(__file__).parent.parent / 'config' / 'graphfeed.json'


@dataclass(frozen=True)
class GraphFeedConfig:
    """
    Configuration for a GraphFeed instance.

    WHY FROZEN:
    Config should not change while runs are in flight.
    Changes require a new config instance.
    """
    # Settings reconciliation
    debounce_seconds: float = 0.5

    # Anchor resolution
    max_anchor_attempts: int = 3
    fallback_anchor_text: str = "GraphFeed"

    # Content source
    fetch_timeout_seconds: float = 30.0
    user_agent: str = "GraphFeed/1.0"
    base_url: str = "https://www.reddit.com"
    listing_limit: int = 25

    # Item selection; None means unseeded
    random_seed: Optional[int] = None

    @classmethod
    def load(cls, config_path: Optional[Path] = None) -> 'GraphFeedConfig':
        """
        Load config from a JSON file.

        With no path, the default file is used if it exists; otherwise the
        built-in defaults are returned. Unknown keys are ignored.
        """
        if config_path is None:
            config_path = DEFAULT_CONFIG_PATH
            if not config_path.exists():
                return cls()

        with open(config_path, 'r', encoding='utf-8') as f:
            raw = json.load(f)

        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in raw.items() if k in known})
