import os
from copy import deepcopy
from pathlib import Path
from loguru import logger
from ruamel.yaml import YAML


class ConfigLoader:
    _instance = None
    _config_data = {}
    _config_path = Path("config.yaml")
    _yaml = YAML()

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super(ConfigLoader, cls).__new__(cls)
            cls._yaml.preserve_quotes = True
            cls._yaml.indent(mapping=2, sequence=4, offset=2)
            cls._config_path = Path(os.environ.get("AUTEBOOK_CONFIG", "config.yaml"))
            cls._instance.load()
        return cls._instance

    # Used when the file does not exist yet, and as fallback for missing keys
    _default_config = {
        "log": {
            "level": "INFO",
            "dir": "logs",
            "retention": 7
        },
        "network": {
            "requests_per_second": 2,
            "burst": 1,
            "max_bounces": 10,
            "base_backoff_seconds": 8,
            "timeout_seconds": 60,
            "user_agent": "AutEBook <https://github.com/ValentinLeTallec/AutEBook>",
            "debug_dump": False
        },
        "cache": {
            "dir": "~/.cache/autebook"
        },
        "update": {
            "workers": 4,
            "stash_dir": ".stash"
        },
        "epub": {
            "language": "en"
        },
        "sources": {
            "fanficfare": False
        },
        "koreader": {
            "reset_finished": False
        }
    }

    def load(self):
        """
        Load the configuration file, creating it with defaults when missing.
        """
        try:
            if not self._config_path.exists():
                logger.warning(f"Configuration file not found: {self._config_path.absolute()}, writing defaults")
                self._config_data = deepcopy(self._default_config)
                self.save()
                return

            with open(self._config_path, 'r', encoding='utf-8') as f:
                data = self._yaml.load(f)
                if not data:
                    raise ValueError("Configuration file is empty")
                self._config_data = data

            logger.debug(f"Configuration loaded from {self._config_path}")

        except Exception as e:
            logger.error(f"Failed to load configuration: {e}")
            raise

    def reload(self):
        self.load()

    @property
    def log(self):
        return self._config_data.get('log', self._default_config['log'])

    @property
    def network(self):
        return self._config_data.get('network', self._default_config['network'])

    @staticmethod
    def _lookup(data, keys):
        value = data
        for k in keys:
            value = value[k]
        return value

    def get(self, key, default=None):
        """
        Dotted lookup, e.g. ``network.max_bounces``. Keys missing from the
        file fall back to the built-in defaults, then to ``default``.
        """
        keys = key.split('.')
        for source in (self._config_data, self._default_config):
            try:
                return self._lookup(source, keys)
            except (KeyError, TypeError):
                continue
        return default

    def set(self, key, value):
        """
        Dotted assignment, e.g. ``update.workers``. Not persisted until save().
        """
        keys = key.split('.')
        target = self._config_data
        for k in keys[:-1]:
            target = target.setdefault(k, {})
        target[keys[-1]] = value

    def save(self):
        try:
            self._config_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self._config_path, 'w', encoding='utf-8') as f:
                self._yaml.dump(self._config_data, f)
            logger.info(f"Configuration saved to {self._config_path}")
        except Exception as e:
            logger.error(f"Failed to save configuration: {e}")
            raise


config = ConfigLoader()
