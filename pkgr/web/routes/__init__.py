"""Web 路由模块 - Blueprint 集合

- files_bp.py: 仓库原始文件（index.json、packages/...），供其他仓库作为软件源同步
- packages_bp.py: JSON 查询 API
"""

from pkgr.web.routes.files_bp import files_bp
from pkgr.web.routes.packages_bp import packages_bp

__all__ = [
    "files_bp",
    "packages_bp",
]
