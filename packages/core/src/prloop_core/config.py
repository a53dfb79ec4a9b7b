import os
from pathlib import Path
from typing import Optional

import yaml

DEFAULT_CONFIG: dict = {
    "bot_name": "prloop",
    "reviewer_aliases": ["codex", "codex-bot", "codex-reviewer"],
    "reviewer_bot_pattern": "codex",
    "fix_provider": "http",  # http | anthropic | openai
    "fix_api_url": "https://api.augmentcode.com",
    "fix_timeout": 60,
    "merge_method": "squash",
    "loop_threshold": 3,
    "state_retention_hours": 24,
    "cleanup_interval_minutes": 60,
    "max_workers": 4,
    "git_user_name": "prloop[bot]",
    "git_user_email": "bot@prloop.dev",
    "store": "noop",  # noop | sqlite
    "store_path": ".prloop.db",
}


def _split_aliases(value) -> list[str]:
    if isinstance(value, str):
        value = value.split(",")
    return [alias.strip() for alias in value if alias and alias.strip()]


def load_config(config_path: str = ".prloop.yml", cli_overrides: Optional[dict] = None) -> dict:
    """
    Load configuration by merging (in order of precedence):
      1. Built-in defaults
      2. .prloop.yml in the current directory
      3. CLI argument overrides
      4. PRLOOP_* environment variables and credentials
    """
    config = {**DEFAULT_CONFIG, "reviewer_aliases": list(DEFAULT_CONFIG["reviewer_aliases"])}

    path = Path(config_path)
    if path.exists():
        with open(path) as f:
            file_config = yaml.safe_load(f) or {}
        config.update(file_config)

    if cli_overrides:
        for key, value in cli_overrides.items():
            if value is not None:
                config[key] = value

    if os.environ.get("PRLOOP_BOT_NAME"):
        config["bot_name"] = os.environ["PRLOOP_BOT_NAME"]
    if os.environ.get("PRLOOP_REVIEWER_ALIASES"):
        config["reviewer_aliases"] = os.environ["PRLOOP_REVIEWER_ALIASES"]
    if os.environ.get("PRLOOP_FIX_API_URL"):
        config["fix_api_url"] = os.environ["PRLOOP_FIX_API_URL"]
    config["reviewer_aliases"] = _split_aliases(config["reviewer_aliases"])

    # Credentials are never read from the config file.
    config["fix_api_key"] = os.environ.get("PRLOOP_FIX_API_KEY")
    config["github_token"] = os.environ.get("GITHUB_TOKEN")
    config["anthropic_api_key"] = os.environ.get("ANTHROPIC_API_KEY")
    config["openai_api_key"] = os.environ.get("OPENAI_API_KEY")

    return config
