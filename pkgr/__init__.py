"""pageos-pkgr — PageOS Web 应用包管理器"""

__version__ = "0.3.0"
