"""包元数据（metadata.json）

每个版本目录下一份，记录包的身份字段和文件清单 all_files（相对路径 → SHA-256）。
打包阶段 all_files 中允许出现空哈希，安装前必须全部填充。
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Any

from pkgr.core.exceptions import NotFoundError, ValidationError
from pkgr.utils.serde_io import load_json, save_json

logger = logging.getLogger(__name__)

METADATA_FILENAME = "metadata.json"

# 包 ID 与版本号会直接作为目录名使用
_SAFE_TOKEN_RE = re.compile(r"^[A-Za-z0-9_][A-Za-z0-9_.+@\-]*$")


def validate_token(value: str, field_name: str) -> str:
    """校验包 ID / 版本号可以安全地用作目录名"""
    if not value or not _SAFE_TOKEN_RE.match(value) or value in (".", ".."):
        raise ValidationError(f"{field_name} 包含非法字符或为空: {value!r}")
    return value


def validate_relative_path(path: str) -> str:
    """校验 all_files 中的路径是包内相对路径（不允许绝对路径和 ..）"""
    p = PurePosixPath(path)
    if not path or p.is_absolute() or ".." in p.parts or "\\" in path:
        raise ValidationError(f"非法的文件路径: {path!r}")
    if p.name == METADATA_FILENAME and len(p.parts) == 1:
        raise ValidationError(f"文件清单不能包含 {METADATA_FILENAME}")
    return str(p)


@dataclass
class PackageMetadata:
    """单个版本的包元数据"""

    name: str = ""
    id: str = ""
    version: str = ""
    description: str = ""
    icon: str = ""
    author: str = ""
    type: str = ""
    category: str = ""
    permissions: list[str] = field(default_factory=list)
    entry: str = ""
    all_files: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Any) -> PackageMetadata:
        """从 JSON 对象构造并校验，格式错误抛出 ValidationError"""
        if not isinstance(data, dict):
            raise ValidationError("metadata.json 顶层必须是对象")

        all_files = data.get("all_files") or {}
        if not isinstance(all_files, dict):
            raise ValidationError("all_files 必须是 路径 → 哈希 的映射")
        permissions = data.get("permissions") or []
        if not isinstance(permissions, list):
            raise ValidationError("permissions 必须是字符串列表")

        meta = cls(
            name=str(data.get("name", "")),
            id=str(data.get("id", "")),
            version=str(data.get("version", "")),
            description=str(data.get("description", "")),
            icon=str(data.get("icon", "")),
            author=str(data.get("author", "")),
            type=str(data.get("type", "")),
            category=str(data.get("category", "")),
            # 权限是集合语义，去重但保持声明顺序
            permissions=list(dict.fromkeys(str(p) for p in permissions)),
            entry=str(data.get("entry", "")),
            all_files={str(k): str(v or "") for k, v in all_files.items()},
        )
        validate_token(meta.id, "包 ID")
        validate_token(meta.version, "版本号")
        for path in meta.all_files:
            validate_relative_path(path)
        return meta

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "id": self.id,
            "version": self.version,
            "description": self.description,
            "icon": self.icon,
            "author": self.author,
            "type": self.type,
            "category": self.category,
            "permissions": list(self.permissions),
            "entry": self.entry,
            "all_files": dict(sorted(self.all_files.items())),
        }

    @classmethod
    def load(cls, path: Path) -> PackageMetadata:
        if not path.exists():
            raise NotFoundError(f"元数据文件不存在: {path}")
        try:
            data = load_json(path)
        except json.JSONDecodeError as e:
            raise ValidationError(f"无法解析元数据 JSON: {path}: {e}") from e
        return cls.from_dict(data)

    @classmethod
    def from_bytes(cls, raw: bytes, origin: str = "") -> PackageMetadata:
        try:
            data = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise ValidationError(f"无法解析元数据 JSON: {origin}: {e}") from e
        return cls.from_dict(data)

    def save(self, path: Path) -> None:
        save_json(path, self.to_dict())

    # ---- 文件清单 ----

    def add_file(self, path: str, sha256: str = "") -> None:
        self.all_files[validate_relative_path(path)] = sha256

    def remove_file(self, path: str) -> str | None:
        return self.all_files.pop(path, None)

    def has_file(self, path: str) -> bool:
        return path in self.all_files

    def unhashed_files(self) -> list[str]:
        """返回尚未填充哈希的文件"""
        return sorted(p for p, h in self.all_files.items() if not h)
