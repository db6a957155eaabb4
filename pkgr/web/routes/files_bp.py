"""仓库文件 Blueprint

按与本地仓库相同的布局发布文件，使 `<url>index.json` 和
`<url>packages/<id>/<version>/<path>` 可被 SourceTransport 直接拉取。
"""

from __future__ import annotations

from flask import Blueprint, Response, send_file, send_from_directory

from pkgr.core.metadata import validate_token
from pkgr.web.responses import not_found

files_bp = Blueprint("files", __name__)


def _container():  # type: ignore[no-untyped-def]
    from pkgr.services.container import get_container
    return get_container()


@files_bp.route("/index.json", methods=["GET"])
def index_json() -> Response | tuple[Response, int]:
    path = _container().context.index_path
    if not path.exists():
        return not_found("索引")
    return send_file(path, mimetype="application/json", max_age=0)


@files_bp.route("/packages/<package_id>/<version>/<path:rel_path>", methods=["GET"])
def package_file(package_id: str, version: str, rel_path: str) -> Response | tuple[Response, int]:
    validate_token(package_id, "包 ID")
    validate_token(version, "版本号")
    store = _container().store
    if not store.has_version(package_id, version):
        return not_found(f"版本 {package_id}@{version} ")
    # send_from_directory 拒绝越出版本目录的路径
    return send_from_directory(store.version_dir(package_id, version), rel_path, max_age=0)
