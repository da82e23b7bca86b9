"""Context configuration model and config file loading."""

from __future__ import annotations

import tomllib
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from rich.console import Console

console = Console()

# --- Config File Loading ---

CONFIG_PATH = Path.home() / ".config" / "context-engine" / "config.toml"
CONFIG_PATH_2 = Path("context-engine-config.toml")


def _replace_dashed_keys(cfg: dict[str, Any]) -> dict[str, Any]:
    """Replace dashed keys with underscores in the config options."""
    return {k.replace("-", "_"): v for k, v in cfg.items()}


def load_config(config_path_str: str | None = None) -> dict[str, Any]:
    """Load the TOML configuration file and process it for nested structures."""
    if config_path_str:
        config_path = Path(config_path_str)
    elif CONFIG_PATH.exists():
        config_path = CONFIG_PATH
    elif CONFIG_PATH_2.exists():
        config_path = CONFIG_PATH_2
    else:
        return {}

    if config_path.exists():
        with config_path.open("rb") as f:
            cfg = tomllib.load(f)
            return {k: _replace_dashed_keys(v) for k, v in cfg.items()}

    # Report error only if an explicit path was given
    if config_path_str:
        console.print(
            f"[bold red]Config file not found at {config_path_str}[/bold red]",
        )
    return {}


# --- Context Configuration ---


class ContextStrategy(str, Enum):
    """How history and long-term facts are combined into each request."""

    SLIDING_WINDOW = "sliding_window"
    STICKY_FACTS = "sticky_facts"
    BRANCHING = "branching"

    @property
    def uses_facts(self) -> bool:
        """Whether the facts block is sent under this strategy."""
        return self in (ContextStrategy.STICKY_FACTS, ContextStrategy.BRANCHING)


def _clamp(value: int, low: int, high: int) -> int:
    return max(low, min(high, value))


class ContextConfig(BaseModel):
    """Immutable context-management settings.

    Replace the whole value to change settings; the ``with_*`` helpers return
    a clamped copy.
    """

    model_config = ConfigDict(frozen=True)

    strategy: ContextStrategy = ContextStrategy.STICKY_FACTS
    keep_last_n: int = Field(10, ge=0)
    compression_block_size: int = Field(5, ge=1)
    max_summary_blocks: int = Field(5, ge=1)
    compression_threshold: float = Field(0.7, gt=0.0, le=1.0)
    summary_max_tokens: int = Field(200, ge=1)
    enable_auto_compression: bool = True
    include_agent_primer: bool = False
    enable_facts_memory: bool = True
    max_facts: int = Field(20, ge=1)

    def should_compress(self, history_size: int) -> bool:
        """Return True once enough messages sit outside the recent window."""
        return (history_size - self.keep_last_n) >= self.compression_block_size

    @property
    def facts_enabled(self) -> bool:
        """Whether facts are both tracked and sent under the current strategy."""
        return self.enable_facts_memory and self.strategy.uses_facts

    def with_strategy(self, strategy: ContextStrategy) -> ContextConfig:
        """Return a copy using ``strategy``."""
        return self.model_copy(update={"strategy": strategy})

    def with_keep_last_n(self, value: int) -> ContextConfig:
        """Return a copy with ``keep_last_n`` clamped to [2, 50]."""
        return self.model_copy(update={"keep_last_n": _clamp(value, 2, 50)})

    def with_compression_block_size(self, value: int) -> ContextConfig:
        """Return a copy with ``compression_block_size`` clamped to [2, 20]."""
        return self.model_copy(update={"compression_block_size": _clamp(value, 2, 20)})

    def with_max_summary_blocks(self, value: int) -> ContextConfig:
        """Return a copy with ``max_summary_blocks`` clamped to [1, 20]."""
        return self.model_copy(update={"max_summary_blocks": _clamp(value, 1, 20)})

    def with_max_facts(self, value: int) -> ContextConfig:
        """Return a copy with ``max_facts`` clamped to [1, 200]."""
        return self.model_copy(update={"max_facts": _clamp(value, 1, 200)})

    def with_auto_compression(self, *, enabled: bool) -> ContextConfig:
        """Return a copy with auto-compression toggled."""
        return self.model_copy(update={"enable_auto_compression": enabled})

    def __str__(self) -> str:
        return (
            f"ContextConfig(strategy={self.strategy.value}, keep_last_n={self.keep_last_n}, "
            f"block_size={self.compression_block_size}, max_blocks={self.max_summary_blocks}, "
            f"auto={self.enable_auto_compression}, facts={self.enable_facts_memory}, "
            f"max_facts={self.max_facts})"
        )


DEFAULT_CONTEXT_CONFIG = ContextConfig()
CONSERVATIVE_CONTEXT_CONFIG = ContextConfig(
    keep_last_n=6,
    compression_block_size=4,
    max_summary_blocks=3,
)
AGGRESSIVE_CONTEXT_CONFIG = ContextConfig(
    keep_last_n=4,
    compression_block_size=3,
    max_summary_blocks=8,
)

PRESETS: dict[str, ContextConfig] = {
    "default": DEFAULT_CONTEXT_CONFIG,
    "conservative": CONSERVATIVE_CONTEXT_CONFIG,
    "aggressive": AGGRESSIVE_CONTEXT_CONFIG,
}
