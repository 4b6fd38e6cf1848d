from filevault.config.config_manager import get_app_config, reload_app_config
from filevault.config.config_schema import AppConfig

__all__ = ["AppConfig", "get_app_config", "reload_app_config"]
