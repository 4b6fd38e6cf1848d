# filevault/core/logger.py
from loguru import logger
import sys
import os
from pathlib import Path

# 获取运行环境
ENV = os.getenv("ENV", "development").lower()

# 清除默认 handler
logger.remove()

# 控制台输出
logger.add(
    sys.stderr,
    level="DEBUG" if ENV == "development" else "INFO",
    colorize=True,
    enqueue=True,
    backtrace=True,
    diagnose=False,
    format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
           "<level>{level: <8}</level> | "
           "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
           "<level>{message}</level>"
)

_file_sinks_added = False


def setup_logging(logging_config) -> None:
    """
    根据 LoggingConfig 追加文件日志输出，在应用启动时调用一次。
    """
    global _file_sinks_added
    if not logging_config.enable_file or _file_sinks_added:
        return

    log_dir = Path(logging_config.log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)

    # 普通文本日志输出到文件
    logger.add(
        log_dir / "file_vault.log",
        level="DEBUG",
        rotation=logging_config.rotation,
        retention=logging_config.retention,
        encoding="utf-8",
        enqueue=True,
        backtrace=True,
    )

    # JSON 结构化日志输出
    logger.add(
        log_dir / "file_vault.json",
        level="WARNING",  # 只记录警告及以上
        rotation=logging_config.rotation,
        retention=logging_config.retention,
        serialize=True,
        encoding="utf-8",
        enqueue=True,
    )
    _file_sinks_added = True
    logger.debug(f"File log sinks initialized in {log_dir}")


def get_logger(name: str = None):
    """仿 logging.getLogger() 实现的 loguru logger 工厂方法"""
    if name:
        return logger.bind(module=name)
    return logger
