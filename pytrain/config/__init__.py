"""Config module."""

from typing import Dict, Any
from .models import (RepoConfig, UserConfig, EditorConfig, ConflictResolutionConfig,
                     ToolConfig, TrainConfig)

class Config(TrainConfig):
    """Config object holding repository, user and tool config.

    Built from the plain dict produced by the config parser so that every
    section is validated through its Pydantic model.
    """
    def __init__(self, config: Dict[str, Dict[str, Any]]):
        """Initialize with parsed config dict."""
        super().__init__(
            repo=RepoConfig.model_validate(config.get('repo', {})),
            user=UserConfig.model_validate(config.get('user', {})),
            editor=EditorConfig.model_validate(config.get('editor', {})),
            conflict=ConflictResolutionConfig.model_validate(config.get('conflict', {})),
            tool=ToolConfig.model_validate(config.get('tool', {}).get('train', {})),
        )

def default_config() -> Config:
    """Get default config without reading any file."""
    return Config({
        'repo': {
            'remote': 'origin',
        },
        'user': {},
        'tool': {
            'train': {
                'concurrency': 0
            }
        }
    })
