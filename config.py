import tomllib
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional
from dotenv import load_dotenv
import os

CONFIG_DIR = Path.home() / ".bookcoach"
CONFIG_PATH = CONFIG_DIR / "config.toml"
PROJECT_CONFIG_EXAMPLE = Path(__file__).parent / "config.toml"


@dataclass(frozen=True)
class SchedulerSettings:
    """Tunables threaded into the coverage, queue, curveball and lesson services."""

    curveball_delay_days: int = 3
    mcq_cap: int = 3
    open_cap: int = 1
    review_limit: int = 2
    correction_limit: int = 2


def load_config() -> Dict[str, Any]:
    """Load config from ~/.bookcoach/config.toml, copy example if missing, load .env overrides."""
    load_dotenv()  # Load .env for overrides (e.g., CURVEBALL_DELAY_DAYS env var)
    if not CONFIG_PATH.exists():
        CONFIG_DIR.mkdir(exist_ok=True)
        shutil.copy(PROJECT_CONFIG_EXAMPLE, CONFIG_PATH)
    with open(CONFIG_PATH, "rb") as f:
        config = tomllib.load(f)

    curveball_cfg = config.get("curveball", {})
    config["curveball"] = {
        "delay_days": int(os.getenv("CURVEBALL_DELAY_DAYS", curveball_cfg.get("delay_days", 3))),
    }
    queue_cfg = config.get("review_queue", {})
    config["review_queue"] = {
        "mcq_cap": int(queue_cfg.get("mcq_cap", 3)),
        "open_cap": int(queue_cfg.get("open_cap", 1)),
    }
    lessons_cfg = config.get("lessons", {})
    config["lessons"] = {
        "review_limit": int(lessons_cfg.get("review_limit", 2)),
        "correction_limit": int(lessons_cfg.get("correction_limit", 2)),
    }
    ollama_cfg = config.get("ollama", {})
    config["ollama"] = {
        "model": os.getenv("OLLAMA_MODEL", ollama_cfg.get("model", "llama3.2")),
        "timeout": int(os.getenv("OLLAMA_TIMEOUT", ollama_cfg.get("timeout", 60))),
    }
    generation_cfg = config.get("generation", {})
    config["generation"] = {
        "max_attempts": int(os.getenv(
            "GENERATION_MAX_ATTEMPTS", generation_cfg.get("max_attempts", 3)
        )),
        "backoff_seconds": float(os.getenv(
            "GENERATION_BACKOFF_SECONDS", generation_cfg.get("backoff_seconds", 0.5)
        )),
    }
    return config

def get_config_value(section: str, key: str, default: Optional[Any] = None) -> Any:
    """Get nested config value, e.g., get_config_value('curveball', 'delay_days')."""
    config = load_config()
    value = config.get(section, {}).get(key, default)
    return value


def scheduler_settings(config: Optional[Dict[str, Any]] = None) -> SchedulerSettings:
    """Build the immutable scheduler settings from a loaded config."""
    if config is None:
        config = load_config()
    return SchedulerSettings(
        curveball_delay_days=config["curveball"]["delay_days"],
        mcq_cap=config["review_queue"]["mcq_cap"],
        open_cap=config["review_queue"]["open_cap"],
        review_limit=config["lessons"]["review_limit"],
        correction_limit=config["lessons"]["correction_limit"],
    )
