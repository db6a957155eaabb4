"""Web 层统一响应辅助函数

错误响应统一为 {"error": 消息, "code": 错误码}，错误码与 PkgrError.code 一致，
便于下游仓库或脚本按错误码判断，而不必解析中文消息。
"""

from __future__ import annotations

from flask import Response, jsonify

from pkgr.core.exceptions import NotFoundError, PkgrError


def ok(payload: dict) -> Response:
    return jsonify(payload)


def error(message: str, code: str, status: int) -> tuple[Response, int]:
    return jsonify(error=message, code=code), status


def from_exception(exc: PkgrError) -> tuple[Response, int]:
    """业务异常：不存在 → 404，其余 → 400"""
    status = 404 if isinstance(exc, NotFoundError) else 400
    return error(str(exc), exc.code, status)


def not_found(resource: str) -> tuple[Response, int]:
    return error(f"{resource}不存在", NotFoundError.code, 404)


def bad_request(message: str) -> tuple[Response, int]:
    return error(message, "BAD_REQUEST", 400)
