"""包查询 API Blueprint"""

from __future__ import annotations

from flask import Blueprint, Response, request

from pkgr.web.responses import bad_request, ok

packages_bp = Blueprint("packages", __name__, url_prefix="/api/packages")


def _repo():  # type: ignore[no-untyped-def]
    from pkgr.services.container import get_container
    return get_container().repo


@packages_bp.route("", methods=["GET"])
def list_packages() -> Response | tuple[Response, int]:
    """查询索引；section=packages|source|all，q 为过滤文本"""
    section = request.args.get("section", "packages")
    if section not in ("packages", "source", "all"):
        return bad_request(f"未知的索引分区: {section}")
    entries = _repo().list_packages(section=section, text=request.args.get("q") or None)
    return ok({"section": section, "packages": [e.to_dict() for e in entries]})


@packages_bp.route("/<package_id>", methods=["GET"])
def get_package(package_id: str) -> Response | tuple[Response, int]:
    return ok({"package": _repo().info(package_id)})
