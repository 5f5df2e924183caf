"""Release endpoints of an FoD tenant."""
from __future__ import annotations

from typing import Any

from ..json_document import JSONMap
from ..query import QueryBuilder
from .connection import FoDConnection

RELEASE_PATH = "/api/v3/releases/{releaseId}"


class FoDReleaseAPI:
    def __init__(self, conn: FoDConnection) -> None:
        self.conn = conn

    def query_releases(self) -> QueryBuilder:
        return QueryBuilder(self.conn, "/api/v3/releases", paging_supported=True)

    def query_release_child_entities(self, release_id: Any, child: str, paging_supported: bool = True) -> QueryBuilder:
        return QueryBuilder(self.conn, f"{RELEASE_PATH}/{child}", paging_supported=paging_supported,
                            releaseId=release_id)

    def query_vulnerabilities(self, release_id: Any) -> QueryBuilder:
        return self.query_release_child_entities(release_id, "vulnerabilities")

    def query_scans(self, release_id: Any) -> QueryBuilder:
        return self.query_release_child_entities(release_id, "scans")

    def get_release(self, release_id: Any, *fields: str, use_cache: bool = True) -> JSONMap:
        return (self.query_releases().param_q_and("releaseId", release_id)
                .use_cache(use_cache).param_fields(*fields).build().get_unique())
