"""统一异常体系

所有业务异常继承 PkgrError。CLI 层据此输出友好提示并以非零码退出，
Web 层据此映射 HTTP 状态码，同步引擎据此区分"记录后继续"与"中止整批"。
"""

from __future__ import annotations


class PkgrError(Exception):
    """包管理器基础异常"""

    code: str = "UNKNOWN"
    # 致命错误会中止同步批次中剩余的包
    fatal: bool = False

    def __init__(self, message: str) -> None:
        super().__init__(message)


class NotFoundError(PkgrError):
    """包、版本或软件源不存在"""

    code = "NOT_FOUND"


class AlreadyExistsError(PkgrError):
    """版本或软件源已存在"""

    code = "ALREADY_EXISTS"


class ChecksumMismatchError(PkgrError):
    """文件缺失或 SHA-256 与清单不一致"""

    code = "CHECKSUM_MISMATCH"

    def __init__(self, path: str, message: str = "") -> None:
        super().__init__(message or f"文件校验失败: {path}")
        self.path = path


class NetworkError(PkgrError):
    """网络拉取失败

    transient=True 表示超时、连接重置、5xx 等可重试的临时故障。
    """

    code = "NETWORK_ERROR"

    def __init__(self, message: str, transient: bool = False) -> None:
        super().__init__(message)
        self.transient = transient


class ConfigError(PkgrError):
    """配置文件缺失、格式错误或语义无效（如软件源 ID 重复）"""

    code = "CONFIG_ERROR"


class LockContentionError(PkgrError):
    """仓库锁被其他进程持有，或在操作过程中丢失"""

    code = "LOCK_CONTENTION"
    fatal = True


class LedgerInconsistentError(PkgrError):
    """版本清单与包存储目录不一致"""

    code = "LEDGER_INCONSISTENT"
    fatal = True


class EmptyLedgerError(PkgrError):
    """版本清单为空"""

    code = "EMPTY_LEDGER"


class StorageExhaustedError(PkgrError):
    """本地存储空间耗尽"""

    code = "STORAGE_EXHAUSTED"
    fatal = True


class ValidationError(PkgrError):
    """输入数据校验失败"""

    code = "VALIDATION_ERROR"

    def __init__(self, message: str, details: list[str] | None = None) -> None:
        super().__init__(message)
        self.details = details or []
