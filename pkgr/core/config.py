"""仓库配置管理（config.toml）

config.toml 结构:

    cache_dir = "/home/user/.cache/pageos-pkgr/cache"

    [[source]]
    id = "pageos"
    name = "PageOS 官方源"
    url = "https://repo.example.com/"
    enabled = true
    require_https = true

加载与保存时都会做语义校验，非法配置统一抛出 ConfigError。
"""

from __future__ import annotations

import logging
import os
import tomllib
from dataclasses import dataclass, field, replace
from pathlib import Path

from pkgr.core.exceptions import AlreadyExistsError, ConfigError, NotFoundError
from pkgr.utils.serde_io import load_toml, save_toml

logger = logging.getLogger(__name__)

APP_NAME = "pageos-pkgr"


def expand_path(path: str | Path) -> Path:
    """展开 ~ 开头的路径"""
    return Path(path).expanduser()


def _xdg_dir(env_var: str, fallback: str) -> Path:
    base = os.environ.get(env_var, "")
    return Path(base) if base else Path.home() / fallback


def default_cache_dir() -> str:
    """默认缓存目录: $XDG_CACHE_HOME/pageos-pkgr/cache"""
    return str(_xdg_dir("XDG_CACHE_HOME", ".cache") / APP_NAME / "cache")


def default_repo_dir() -> str:
    """默认仓库目录: $XDG_DATA_HOME/pageos-pkgr/repo"""
    return str(_xdg_dir("XDG_DATA_HOME", ".local/share") / APP_NAME / "repo")


@dataclass
class SourceConfig:
    """软件源配置

    url 为远程仓库根 URL（必须以 / 结尾），或本地目录如 /home/user/repo/another/
    """

    id: str
    name: str
    url: str
    enabled: bool = True
    require_https: bool = True

    @property
    def is_remote(self) -> bool:
        return self.url.startswith(("http://", "https://"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "url": self.url,
            "enabled": self.enabled,
            "require_https": self.require_https,
        }


@dataclass
class RepositoryConfig:
    """仓库配置"""

    cache_dir: str = field(default_factory=default_cache_dir)
    source: list[SourceConfig] = field(default_factory=list)

    def get_source(self, source_id: str) -> SourceConfig:
        for s in self.source:
            if s.id == source_id:
                return s
        raise NotFoundError(f"未找到软件源: {source_id}")

    def enabled_sources(self) -> list[SourceConfig]:
        return [s for s in self.source if s.enabled]

    @classmethod
    def from_dict(cls, data: dict) -> RepositoryConfig:
        sources = []
        for i, raw in enumerate(data.get("source") or []):
            if not isinstance(raw, dict):
                raise ConfigError(f"第 {i + 1} 个软件源不是表结构")
            missing = [k for k in ("id", "name", "url") if k not in raw]
            if missing:
                raise ConfigError(f"第 {i + 1} 个软件源缺少字段: {', '.join(missing)}")
            sources.append(SourceConfig(
                id=str(raw["id"]),
                name=str(raw["name"]),
                url=str(raw["url"]),
                enabled=bool(raw.get("enabled", True)),
                require_https=bool(raw.get("require_https", True)),
            ))
        return cls(
            cache_dir=str(data.get("cache_dir") or default_cache_dir()),
            source=sources,
        )

    def to_dict(self) -> dict:
        return {
            "cache_dir": self.cache_dir,
            "source": [s.to_dict() for s in self.source],
        }


def validate_config(config: RepositoryConfig) -> None:
    """语义校验，失败抛出 ConfigError"""
    seen: set[str] = set()
    for s in config.source:
        if s.id in seen:
            raise ConfigError(f"软件源ID '{s.id}' 重复")
        seen.add(s.id)

    for s in config.source:
        if not s.url:
            raise ConfigError(f"软件源 '{s.id}' 的URL不能为空")
        if not s.url.startswith(("http://", "https://", "/")):
            raise ConfigError(f"软件源 '{s.id}' 的URL格式无效: {s.url}")
        if s.is_remote and not s.url.endswith("/"):
            raise ConfigError(f"软件源 '{s.id}' 的URL必须以 / 结尾: {s.url}")
        if s.require_https and s.is_remote and not s.url.startswith("https://"):
            raise ConfigError(f"软件源 '{s.id}' 要求HTTPS，但URL不是https://开头")


class ConfigManager:
    """config.toml 读写与软件源增删改"""

    def __init__(self, config_path: str | Path) -> None:
        self.config_path = Path(config_path)

    def load(self) -> RepositoryConfig:
        """加载配置；文件不存在时写入并返回默认配置"""
        if not self.config_path.exists():
            config = RepositoryConfig()
            self.save(config)
            return config

        try:
            data = load_toml(self.config_path)
        except (tomllib.TOMLDecodeError, ValueError) as e:
            raise ConfigError(f"无法解析配置文件 {self.config_path}: {e}") from e

        config = RepositoryConfig.from_dict(data)
        validate_config(config)
        return config

    def save(self, config: RepositoryConfig) -> None:
        """校验后原子写入，POSIX 下权限设为仅用户可读写"""
        validate_config(config)
        mode = 0o600 if os.name == "posix" else None
        save_toml(self.config_path, config.to_dict(), mode=mode)
        logger.debug("配置已保存: %s", self.config_path)

    def add_source(self, source: SourceConfig) -> RepositoryConfig:
        config = self.load()
        if any(s.id == source.id for s in config.source):
            raise AlreadyExistsError(f"软件源ID '{source.id}' 已存在")
        config.source.append(source)
        self.save(config)
        return config

    def remove_source(self, source_id: str) -> RepositoryConfig:
        config = self.load()
        remaining = [s for s in config.source if s.id != source_id]
        if len(remaining) == len(config.source):
            raise NotFoundError(f"未找到软件源: {source_id}")
        config.source = remaining
        self.save(config)
        return config

    def set_enabled(self, source_id: str, enabled: bool) -> RepositoryConfig:
        config = self.load()
        config.get_source(source_id).enabled = enabled
        self.save(config)
        return config

    def enable_source(self, source_id: str) -> RepositoryConfig:
        return self.set_enabled(source_id, True)

    def disable_source(self, source_id: str) -> RepositoryConfig:
        return self.set_enabled(source_id, False)

    def update_source(self, source_id: str, updated: SourceConfig) -> RepositoryConfig:
        """整体替换软件源配置，但保留原 ID"""
        config = self.load()
        idx = next(
            (i for i, s in enumerate(config.source) if s.id == source_id), None,
        )
        if idx is None:
            raise NotFoundError(f"未找到软件源: {source_id}")
        config.source[idx] = replace(updated, id=source_id)
        self.save(config)
        return config
