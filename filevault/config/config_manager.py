import os
import yaml
from string import Template
from pathlib import Path
from functools import lru_cache
from dotenv import load_dotenv

from filevault.config.config_schema import AppConfig
from filevault.config.env_settings import TierEnvSettings
from filevault.core.logger import logger


BASE_DIR = Path(__file__).resolve().parents[2]
CONFIG_DIR = Path(__file__).resolve().parent
DEFAULT_ENV = "config"


def load_yaml(path: Path) -> dict:
    if not path.exists():
        raise FileNotFoundError(f"配置文件未找到: {path}")
    with open(path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def interpolate_env_vars(obj):
    """
    替换 YAML 中的 ${VAR} 为 os.environ 中的值
    并做类型转换（true/false）
    """
    def convert(value: str):
        v = value.lower()
        if v == "true": return True
        if v == "false": return False
        return value

    if isinstance(obj, dict):
        return {k: interpolate_env_vars(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [interpolate_env_vars(i) for i in obj]
    elif isinstance(obj, str):
        raw = Template(obj).safe_substitute(os.environ)
        return convert(raw)
    else:
        return obj


def deep_merge(source: dict, destination: dict) -> dict:
    """深度合并字典，source 会覆盖 destination。"""
    for key, value in source.items():
        if isinstance(value, dict) and isinstance(destination.get(key), dict):
            destination[key] = deep_merge(value, destination[key])
        else:
            destination[key] = value
    return destination


def get_env() -> str:
    return os.getenv("ENV", DEFAULT_ENV)


@lru_cache()
def get_app_config() -> AppConfig:
    env = get_env()
    logger.info(f"🌍 当前环境: {env}")

    # 1. 通用 .env，再由特定环境的 .env.<env> 覆盖
    base_env_path = BASE_DIR / ".env"
    if base_env_path.exists():
        load_dotenv(dotenv_path=base_env_path)
        logger.info(f"✔️ 已加载通用 .env 文件: {base_env_path}")

    env_specific_path = BASE_DIR / f".env.{env}"
    if env_specific_path.exists():
        load_dotenv(dotenv_path=env_specific_path, override=True)
        logger.info(f"✔️ 已加载特定环境 .env 文件: {env_specific_path}")

    # 2. YAML 文件 + 环境变量插值
    config_path = CONFIG_DIR / f"{env}.yaml"
    if config_path.exists():
        logger.info(f"🔧 加载配置文件: {config_path}")
        data = interpolate_env_vars(load_yaml(config_path))
    else:
        logger.warning(f"⚠️ 配置文件不存在: {config_path}，使用默认配置")
        data = {}

    # 3. ENABLE_REDIS_CACHE / ELASTICSEARCH_URL 等环境变量优先级最高
    data = deep_merge(TierEnvSettings().as_overrides(), data)

    config = AppConfig(**data)
    logger.debug(f"🔧 配置文件内容: {config}")
    return config


def reload_app_config() -> AppConfig:
    get_app_config.cache_clear()
    return get_app_config()
