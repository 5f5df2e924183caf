"""Attribute, issue, artifact, job and metrics endpoints of an SSC server."""
from __future__ import annotations

import logging
import os
import time
from dataclasses import dataclass
from datetime import date
from typing import Any, Dict, List, Mapping, Optional, Union
from xml.etree import ElementTree

from urllib3.filepost import encode_multipart_formdata

from ..attributes import AttributeUpdateEncoder, index_attribute_definitions
from ..errors import HttpStatusError, InvalidArgumentError, error_for_status
from ..json_document import JSONList, JSONMap, coerce, parse_json
from ..query import QueryBuilder
from .connection import SSCConnection

logger = logging.getLogger(__name__)

APPLICATION_VERSION_PATH = "/api/v1/projectVersions/{applicationVersionId}"
JOB_TERMINAL_STATES = ("FINISHED", "FAILED", "CANCELLED")
FILE_TOKENS_PATH = "/api/v1/fileTokens"
UPLOAD_PATH = "/upload/resultFileUpload.html"


def parse_upload_result(body: bytes) -> JSONMap:
    """
    SSC answers file uploads with a small XML document such as
    ``<Result><code>-10001</code><msg>...</msg><id>56</id></Result>``;
    newer servers may answer with JSON. Both become a flat JSONMap.
    """
    text = body.decode("utf-8", errors="replace").strip()
    if not text:
        return JSONMap()
    if text.startswith("{"):
        return coerce(parse_json(text), JSONMap)
    try:
        root = ElementTree.fromstring(body.strip())
    except ElementTree.ParseError as exc:
        raise ValueError(f"Unexpected upload response: {text[:200]}") from exc
    return JSONMap((child.tag.rpartition("}")[2], (child.text or "").strip()) for child in root)


class SSCAPI:
    def __init__(self, conn: SSCConnection) -> None:
        self.conn = conn

    def _version_child_query(self, child: str, application_version_id: Any, paging_supported: bool) -> QueryBuilder:
        return QueryBuilder(self.conn, f"{APPLICATION_VERSION_PATH}/{child}",
                            paging_supported=paging_supported,
                            applicationVersionId=application_version_id)


class SSCAttributeAPI(SSCAPI):

    def query_attribute_definitions(self) -> QueryBuilder:
        return QueryBuilder(self.conn, "/api/v1/attributeDefinitions", paging_supported=True)

    def query_application_version_attributes(self, application_version_id: Any) -> QueryBuilder:
        return self._version_child_query("attributes", application_version_id, paging_supported=False)

    def get_attribute_definitions(self, *fields: str, use_cache: bool = True) -> JSONList:
        return self.query_attribute_definitions().use_cache(use_cache).param_fields(*fields).build().get_all()

    def get_application_version_attributes(self, application_version_id: Any, *fields: str,
                                           use_cache: bool = True) -> JSONList:
        return (self.query_application_version_attributes(application_version_id)
                .use_cache(use_cache).param_fields(*fields).build().get_all())

    def get_attribute_id_for_name(self, attribute_name: str, use_cache: bool = True) -> Optional[str]:
        definitions = self.get_attribute_definitions("id", "name", use_cache=use_cache)
        return definitions.map_value("name", attribute_name, "id", str)

    def get_attribute_definitions_by_name_and_id(self, *fields: str, use_cache: bool = True) -> JSONMap:
        """
        Attribute definitions indexed by both name and id. Definitions with
        options also get ``optionsByNameAndGuid``.
        """
        return index_attribute_definitions(self.get_attribute_definitions(*fields, use_cache=use_cache))

    def get_application_version_attribute_values_by_name(self, application_version_id: Any) -> JSONMap:
        """
        Attribute values of an application version indexed by attribute name.
        Attributes without any value are left out.
        """
        result = JSONMap()
        attrs = self.get_application_version_attributes(application_version_id, "guid", "value", "values")
        definitions = self.get_attribute_definitions("guid", "name")
        for attr in attrs.as_value_type(JSONMap):
            name = definitions.map_value("guid", attr.get_path("guid", str), "name", str)
            value = attr.get_path("value", str)
            values = attr.get_path("values", JSONList)
            if value and value.strip():
                result[name] = JSONList([value])
            elif values:
                result[name] = values.get_values("name", str)
        return result

    def update_application_version_attributes(self, application_version_id: Any,
                                              values_by_name_or_id: Mapping[Any, Any]) -> JSONList:
        """
        Update attributes given as ``{attribute name or id: [values]}``.
        Options of SINGLE/MULTIPLE attributes may be given by name or guid.
        """
        encoder = AttributeUpdateEncoder(
            self.get_attribute_definitions_by_name_and_id("id", "name", "type", "options", use_cache=False))
        data = encoder.encode_all(values_by_name_or_id)
        result = self.conn.execute_request(
            "PUT", self.conn.url_for("/api/v1/projectVersions", application_version_id, "attributes"),
            body=data, response_type=JSONMap)
        if result is None:
            return JSONList()
        return result.get_path("data", JSONList)

    def get_required_attributes_with_default_values(self) -> Dict[str, List[Any]]:
        """
        Placeholder values for every required project-version attribute that
        has no server-side default: the first option for enumerated
        attributes, otherwise a value matching the attribute type.
        """
        result: Dict[str, List[Any]] = {}
        definitions = (self.query_attribute_definitions()
                       .param_q_and("required", True)
                       .param_fields("id", "type", "category", "appEntityType", "options", "hasDefault")
                       .build().get_all())
        for definition in definitions.as_value_type(JSONMap):
            if definition.get("category") == "DYNAMIC_SCAN_REQUEST":
                continue
            if definition.get("appEntityType") not in ("PROJECT_VERSION", "ALL"):
                continue
            if definition.get_path("hasDefault", bool):
                continue
            attr_id = definition.get_path("id", str)
            options = definition.get_path("options", JSONList)
            if options:
                value: Any = options[0].get("guid")
            else:
                attr_type = definition.get_path("type", str)
                if attr_type == "INTEGER":
                    value = 0
                elif attr_type == "BOOLEAN":
                    value = True
                elif attr_type == "DATE":
                    value = date.today()
                else:
                    value = "Auto-filled"
            result.setdefault(attr_id, []).append(value)
        return result


@dataclass
class IssueSearchOptions:
    """Whether removed, suppressed and hidden issues are included in issue queries."""

    include_removed: bool = False
    include_suppressed: bool = False
    include_hidden: bool = False

    def to_request_data(self) -> JSONList:
        return JSONList([
            JSONMap(optionType="REMOVED", optionValue=self.include_removed),
            JSONMap(optionType="SUPPRESSED", optionValue=self.include_suppressed),
            JSONMap(optionType="HIDDEN", optionValue=self.include_hidden),
        ])


class SSCIssueAPI(SSCAPI):

    def query_issues(self, application_version_id: Any) -> QueryBuilder:
        return self._version_child_query("issues", application_version_id, paging_supported=True)

    def query_issue_details_by_id(self, issue_id: Any) -> QueryBuilder:
        return QueryBuilder(self.conn, "/api/v1/issueDetails/{id}", id=issue_id)

    def get_issue_details(self, issue_id: Any, *fields: str, use_cache: bool = False) -> JSONMap:
        return self.query_issue_details_by_id(issue_id).use_cache(use_cache).param_fields(*fields).build().get_unique()

    def update_application_version_issue_search_options(self, application_version_id: Any,
                                                        options: IssueSearchOptions) -> None:
        self.conn.execute_request(
            "PUT", self.conn.url_for("/api/v1/projectVersions", application_version_id, "issueSearchOptions"),
            body=options.to_request_data(), response_type=JSONMap)

    def validate_issue_search_string(self, search_string: str) -> Optional[JSONMap]:
        result = self.conn.execute_request(
            "POST", "/api/v1/validateSearchString",
            body=JSONMap(stringToValidate=search_string), response_type=JSONMap)
        if result is None:
            return None
        return result.get_path("data", JSONMap)


class SSCArtifactAPI(SSCAPI):

    def query_artifacts(self, application_version_id: Any) -> QueryBuilder:
        return self._version_child_query("artifacts", application_version_id, paging_supported=True)

    def get_artifact_by_id(self, artifact_id: Any, use_cache: bool = False) -> Optional[JSONMap]:
        data = self.conn.execute_request("GET", self.conn.url_for("/api/v1/artifacts", artifact_id),
                                         response_type=JSONMap, use_cache=use_cache)
        if data is None:
            return None
        return data.get_path("data", JSONMap)

    def approve_artifact(self, artifact_id: Any, comment: str) -> JSONMap:
        data = JSONMap()
        data.put_path("type", "approve")
        data.put_path("values.comment", comment)
        return self.conn.execute_request("POST", self.conn.url_for("/api/v1/artifacts", artifact_id, "action"),
                                         body=data, response_type=JSONMap)

    def get_artifact_for_upload_job(self, job: JSONMap) -> Optional[JSONMap]:
        artifact_id = job.get_path("jobData.PARAM_ARTIFACT_ID", str)
        if artifact_id is None:
            logger.warning(f"Job {job.get('id')} does not reference an artifact")
            return None
        return self.get_artifact_by_id(artifact_id)

    # ---------- file transfer ----------
    def _file_token(self, token_type: str) -> str:
        result = self.conn.execute_request("POST", FILE_TOKENS_PATH,
                                           body=JSONMap(fileTokenType=token_type), response_type=JSONMap)
        token = result.get_path("data.token", str) if result is not None else None
        if not token:
            raise HttpStatusError(200, "POST", self.conn.url_for(FILE_TOKENS_PATH),
                                  f"No {token_type} file token in response: {result}")
        return token

    def _release_file_tokens(self) -> None:
        self.conn.execute_request("DELETE", FILE_TOKENS_PATH)

    def _download(self, path: str, params: Dict[str, Any], target: Union[str, os.PathLike]) -> int:
        token = self._file_token("DOWNLOAD")
        try:
            response = self.conn.execute_raw_request("GET", path, params={**params, "mat": token},
                                                     headers={"Accept": "*/*"})
        finally:
            self._release_file_tokens()
        with open(target, "wb") as fh:
            fh.write(response.body)
        logger.info(f"Downloaded {len(response.body)} bytes from {path} to {target}")
        return len(response.body)

    def download_artifact(self, artifact_id: Any, target: Union[str, os.PathLike]) -> int:
        """Write the artifact file to ``target``; returns the number of bytes written."""
        return self._download("/download/artifactDownload.html", {"id": artifact_id}, target)

    def download_application_file(self, application_version_id: Any, target: Union[str, os.PathLike],
                                  include_source: bool = False) -> int:
        """Write the merged FPR of an application version to ``target``."""
        return self._download("/download/currentStateFprDownload.html",
                              {"id": application_version_id, "includeSource": str(include_source).lower()},
                              target)

    def upload_artifact(self, application_version_id: Any, artifact_path: Union[str, os.PathLike]) -> JSONMap:
        """
        Upload a results file (FPR or any other supported artifact) to an
        application version. SSC processes it in a background job; the
        returned map carries that job id under ``id``.
        """
        with open(artifact_path, "rb") as fh:
            content = fh.read()
        body, content_type = encode_multipart_formdata(
            {"file": (os.path.basename(artifact_path), content, "application/octet-stream")})
        token = self._file_token("UPLOAD")
        try:
            response = self.conn.execute_raw_request(
                "POST", UPLOAD_PATH,
                params={"mat": token, "entityId": application_version_id}, body=body,
                headers={"Content-Type": content_type, "Accept": "*/*"})
        finally:
            self._release_file_tokens()
        try:
            result = parse_upload_result(response.body)
        except ValueError as exc:
            raise error_for_status(response.status_code, "POST", self.conn.url_for(UPLOAD_PATH),
                                   response.text) from exc
        logger.info(f"Uploaded {artifact_path} to application version {application_version_id}, "
                    f"job {result.get('id')}")
        return result

    def get_job_for_upload(self, upload_result: JSONMap, timeout_seconds: float) -> Optional[JSONMap]:
        job_id = upload_result.get_path("id", str)
        if job_id is None:
            raise InvalidArgumentError(f"Upload result does not reference a job: {upload_result}")
        return self.conn.jobs.wait_for_job_completion(job_id, timeout_seconds)

    def upload_artifact_and_wait_processing_completion(self, application_version_id: Any,
                                                       artifact_path: Union[str, os.PathLike],
                                                       timeout_seconds: float) -> Optional[JSONMap]:
        """Upload, wait for the processing job, and return the resulting artifact."""
        upload_result = self.upload_artifact(application_version_id, artifact_path)
        job = self.get_job_for_upload(upload_result, timeout_seconds)
        if job is None:
            return None
        return self.get_artifact_for_upload_job(job)


class SSCJobAPI(SSCAPI):

    def query_jobs(self, job_id: Any = None, job_class_name: Optional[str] = None,
                   priority: Optional[int] = None, state: Optional[str] = None) -> QueryBuilder:
        builder = QueryBuilder(self.conn, "/api/v1/jobs", paging_supported=True)
        for field_name, value in (("id", job_id), ("jobClassName", job_class_name),
                                  ("priority", priority), ("state", state)):
            if value is not None:
                builder.param_q_and(field_name, value)
        return builder

    def get_job(self, job_id: Any) -> Optional[JSONMap]:
        data = self.conn.execute_request("GET", self.conn.url_for("/api/v1/jobs", job_id), response_type=JSONMap)
        if data is None:
            return None
        return data.get_path("data", JSONMap)

    def wait_for_job_completion(self, job_id: Any, timeout_seconds: float, poll_interval: float = 1.0) -> Optional[JSONMap]:
        """
        Poll the job until it reaches FINISHED, FAILED or CANCELLED, or until
        ``timeout_seconds`` elapse. Returns the last job state seen.
        """
        deadline = time.monotonic() + timeout_seconds
        job = self.get_job(job_id)
        while job is not None and job.get("jobState") not in JOB_TERMINAL_STATES:
            if time.monotonic() >= deadline:
                logger.warning(f"Job {job_id} still {job.get('jobState')} after {timeout_seconds}s")
                break
            time.sleep(poll_interval)
            job = self.get_job(job_id)
        if job is not None and job.get("jobState") in JOB_TERMINAL_STATES:
            logger.info(f"Job {job_id} completed with state {job.get('jobState')}")
        return job


class SSCMetricsAPI(SSCAPI):

    def query_variable_history(self, application_version_id: Any) -> QueryBuilder:
        return self._version_child_query("variableHistories", application_version_id, paging_supported=True)

    def query_performance_indicator_history(self, application_version_id: Any) -> QueryBuilder:
        return self._version_child_query("performanceIndicatorHistories", application_version_id,
                                         paging_supported=True)
