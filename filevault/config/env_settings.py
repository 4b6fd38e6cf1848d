from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class TierEnvSettings(BaseSettings):
    """
    从环境变量读取缓存层 / 检索层 / 数据库的开关和连接串。
    未设置的变量保持为 None，此时以 YAML 中的值为准。
    """
    model_config = SettingsConfigDict(extra="ignore", case_sensitive=True)

    enable_redis_cache: Optional[str] = Field(None, alias="ENABLE_REDIS_CACHE")
    redis_url: Optional[str] = Field(None, alias="REDIS_URL")
    enable_elasticsearch: Optional[str] = Field(None, alias="ENABLE_ELASTICSEARCH")
    elasticsearch_url: Optional[str] = Field(None, alias="ELASTICSEARCH_URL")
    elasticsearch_index: Optional[str] = Field(None, alias="ELASTICSEARCH_INDEX")
    database_url: Optional[str] = Field(None, alias="DATABASE_URL")

    def as_overrides(self) -> dict:
        """
        转换为与 AppConfig 结构一致的覆盖字典。
        开关只认字符串 "true"，其余任何取值都视为关闭。
        """
        overrides: dict = {"redis": {}, "elasticsearch": {}, "database": {}}

        if self.enable_redis_cache is not None:
            overrides["redis"]["enabled"] = self.enable_redis_cache == "true"
        if self.redis_url:
            overrides["redis"]["url"] = self.redis_url

        if self.enable_elasticsearch is not None:
            overrides["elasticsearch"]["enabled"] = self.enable_elasticsearch == "true"
        if self.elasticsearch_url:
            overrides["elasticsearch"]["url"] = self.elasticsearch_url
        if self.elasticsearch_index:
            overrides["elasticsearch"]["index"] = self.elasticsearch_index

        if self.database_url:
            overrides["database"]["url"] = self.database_url

        return {k: v for k, v in overrides.items() if v}
