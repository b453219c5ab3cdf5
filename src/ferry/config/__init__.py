"""
Configuration management.

YAML file parsing, environment resolution, task loading.
"""

from ferry.config.loader import Config, load_config
from ferry.config.resolver import resolve_config
from ferry.config.tasks import Auth, Task, load_tasks, task_from_dict

__all__ = [
    "Auth",
    "Config",
    "Task",
    "load_config",
    "load_tasks",
    "resolve_config",
    "task_from_dict",
]
