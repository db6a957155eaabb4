"""仓库只读 HTTP 服务（基于 Flask）

提供：仓库原始文件（可作为其他仓库的软件源）、包查询 API。

启动方式: pkgr repo --repo <dir> serve --port 8080
"""

from __future__ import annotations

import logging

from flask import Flask
from werkzeug.exceptions import HTTPException

from pkgr.core.exceptions import PkgrError
from pkgr.web.responses import error, from_exception
from pkgr.web.routes import files_bp, packages_bp

logger = logging.getLogger(__name__)

app = Flask(__name__)
app.json.ensure_ascii = False
app.json.sort_keys = False

app.register_blueprint(files_bp)
app.register_blueprint(packages_bp)


@app.errorhandler(PkgrError)
def handle_pkgr_error(exc: PkgrError):
    return from_exception(exc)


@app.errorhandler(HTTPException)
def handle_http_exception(exc):
    """将所有 HTTP 异常统一返回 JSON"""
    return error(exc.description, exc.name.upper().replace(" ", "_"), exc.code)


@app.errorhandler(Exception)
def handle_generic_exception(exc):  # noqa: ARG001
    """捕获未处理异常，返回 500 JSON"""
    logger.exception("未处理的异常")
    return error("服务器内部错误", "INTERNAL_ERROR", 500)
