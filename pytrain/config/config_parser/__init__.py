"""Config parser logic."""

import os
from pathlib import Path
from typing import Dict, Any, Optional
import logging
import yaml

from ...errors import GitError
from ...typing import GitInterface

# Get module logger
logger = logging.getLogger(__name__)

RepoConfigDict = Dict[str, Any]  # Use Any since yaml can return various types
ConfigDict = Dict[str, RepoConfigDict]

REPO_CONFIG_FILE = ".train.yaml"
SECTIONS = ('repo', 'user', 'editor', 'conflict', 'tool')

def user_config_file_path() -> Path:
    """Get path to the per-user config file."""
    base = os.environ.get("XDG_CONFIG_HOME") or str(Path.home() / ".config")
    return Path(base) / "git-train" / "config.yaml"

def _merge(config: ConfigDict, loaded: Optional[Dict[str, Any]], source: str) -> None:
    if not loaded:
        return
    if not isinstance(loaded, dict):
        logger.warning(f"Ignoring {source}: expected a mapping, got {type(loaded).__name__}")
        return
    for section in SECTIONS:
        value = loaded.get(section)
        if isinstance(value, dict):
            if section == 'tool':
                config['tool'].setdefault('train', {}).update(value.get('train', value))
            else:
                config[section].update(value)

def _load_yaml(path: Path) -> Optional[Dict[str, Any]]:
    try:
        with open(path, 'r') as f:
            logger.debug(f"Found {path}, loading...")
            return yaml.safe_load(f)
    except FileNotFoundError:
        return None

def parse_config(git_cmd: Optional[GitInterface] = None) -> ConfigDict:
    """Parse config from user config, repository config and environment.

    Later sources win: defaults, user file, `.train.yaml` at the work-tree
    root, then GITLAB_URL / GITLAB_PROJECT_ID / TRAIN_EDITOR.
    """
    config: ConfigDict = {
        'repo': {
            'remote': 'origin',
        },
        'user': {},
        'editor': {},
        'conflict': {},
        'tool': {
            'train': {
                'concurrency': 0,
                'pretend': False,
            }
        }
    }

    _merge(config, _load_yaml(user_config_file_path()), "user config")

    repo_root = Path.cwd()
    if git_cmd is not None:
        try:
            repo_root = Path(git_cmd.run_cmd("rev-parse --show-toplevel").strip())
        except GitError as e:
            logger.debug(f"Could not determine work-tree root: {e}")
    repo_file = repo_root / REPO_CONFIG_FILE
    loaded = _load_yaml(repo_file)
    if loaded is None:
        logger.debug(f"No {REPO_CONFIG_FILE} found, using defaults")
    _merge(config, loaded, str(repo_file))

    if os.environ.get("GITLAB_URL"):
        config['repo']['gitlab_url'] = os.environ["GITLAB_URL"]
    if os.environ.get("GITLAB_PROJECT_ID"):
        config['repo']['gitlab_project_id'] = os.environ["GITLAB_PROJECT_ID"]
    if os.environ.get("TRAIN_EDITOR"):
        config['editor']['command'] = os.environ["TRAIN_EDITOR"]

    return config

def save_user_config(section: str, values: Dict[str, Any]) -> Path:
    """Merge `values` into `section` of the user config file and write it back."""
    path = user_config_file_path()
    current = _load_yaml(path) or {}
    current.setdefault(section, {}).update(values)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, 'w') as f:
        yaml.safe_dump(current, f, default_flow_style=False, sort_keys=True)
    logger.info(f"Saved {section} settings to {path}")
    return path
