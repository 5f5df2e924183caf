from __future__ import annotations

import json
from urllib.parse import parse_qs, urlparse

import pytest
import responses

from appsec_rest.errors import AuthenticationError, MultipleResultsError, NotFoundError
from appsec_rest.ssc import IssueSearchOptions, SSCConnection, SSCConnectionConfig, escape_ssc_value
from appsec_rest.ssc import api as ssc_api


@pytest.fixture()
def conn(base_url):
    return SSCConnection(SSCConnectionConfig(base_url=base_url, token="tok"))


def test_escape_ssc_value():
    assert escape_ssc_value("RUNNING") == "RUNNING"
    assert escape_ssc_value("com.x.Job-1*") == "com.x.Job-1*"
    assert escape_ssc_value("SQL Injection") == '"SQL Injection"'
    assert escape_ssc_value('a"b\\c') == '"a\\"b\\\\c"'


@responses.activate
def test_token_header_replaces_basic_auth(base_url):
    cfg = SSCConnectionConfig(base_url=base_url, credentials="admin:pw", token="tok")
    conn = SSCConnection(cfg)
    responses.add(responses.GET, f"{base_url}/api/v1/issueDetails/5", json={"data": {"id": 5}}, status=200)

    conn.issues.get_issue_details(5)

    assert responses.calls[0].request.headers["Authorization"] == "FortifyToken tok"


@responses.activate
def test_issue_query_paging_and_filters(conn, base_url):
    responses.add(responses.GET, f"{base_url}/api/v1/projectVersions/6/issues",
                  json={"data": [{"id": 1}, {"id": 2}]}, status=200)
    responses.add(responses.GET, f"{base_url}/api/v1/projectVersions/6/issues",
                  json={"data": []}, status=200)

    issues = (conn.issues.query_issues(6).param_q_and("category", "SQL Injection")
              .param_q_and("friority", "Critical").page_size(2).build().get_all())

    assert [i["id"] for i in issues] == [1, 2]
    params = parse_qs(urlparse(responses.calls[0].request.url).query)
    assert params["q"] == ['category:"SQL Injection" and friority:Critical']
    assert [parse_qs(urlparse(c.request.url).query)["start"] for c in responses.calls] == [["0"], ["2"]]


@responses.activate
def test_get_issue_details_unique(conn, base_url):
    responses.add(responses.GET, f"{base_url}/api/v1/issueDetails/5", json={"data": {"id": 5}}, status=200)
    responses.add(responses.GET, f"{base_url}/api/v1/issueDetails/6", json={"data": []}, status=200)
    responses.add(responses.GET, f"{base_url}/api/v1/issueDetails/7", json={"data": [{}, {}]}, status=200)

    assert conn.issues.get_issue_details(5, "id")["id"] == 5
    with pytest.raises(NotFoundError):
        conn.issues.get_issue_details(6)
    with pytest.raises(MultipleResultsError):
        conn.issues.get_issue_details(7)


@responses.activate
def test_issue_search_options_and_validation(conn, base_url):
    responses.add(responses.PUT, f"{base_url}/api/v1/projectVersions/6/issueSearchOptions",
                  json={"data": []}, status=200)
    responses.add(responses.POST, f"{base_url}/api/v1/validateSearchString",
                  json={"data": {"valid": True}}, status=200)

    conn.issues.update_application_version_issue_search_options(6, IssueSearchOptions(include_hidden=True))
    result = conn.issues.validate_issue_search_string("[analysis type]:sca")

    assert json.loads(responses.calls[0].request.body) == [
        {"optionType": "REMOVED", "optionValue": False},
        {"optionType": "SUPPRESSED", "optionValue": False},
        {"optionType": "HIDDEN", "optionValue": True},
    ]
    assert json.loads(responses.calls[1].request.body) == {"stringToValidate": "[analysis type]:sca"}
    assert result == {"valid": True}


@responses.activate
def test_approve_artifact_builds_nested_body(conn, base_url):
    responses.add(responses.POST, f"{base_url}/api/v1/artifacts/12/action",
                  json={"data": {"message": "ok"}}, status=200)

    conn.artifacts.approve_artifact(12, "reviewed")

    assert json.loads(responses.calls[0].request.body) == {"type": "approve", "values": {"comment": "reviewed"}}


@responses.activate
def test_wait_for_job_then_fetch_artifact(conn, base_url, monkeypatch):
    sleeps = []
    monkeypatch.setattr(ssc_api.time, "sleep", lambda s: sleeps.append(s))
    responses.add(responses.GET, f"{base_url}/api/v1/jobs/j1",
                  json={"data": {"id": "j1", "jobState": "RUNNING"}}, status=200)
    responses.add(responses.GET, f"{base_url}/api/v1/jobs/j1",
                  json={"data": {"id": "j1", "jobState": "FINISHED", "jobData": {"PARAM_ARTIFACT_ID": "44"}}},
                  status=200)
    responses.add(responses.GET, f"{base_url}/api/v1/artifacts/44",
                  json={"data": {"id": 44, "status": "PROCESS_COMPLETE"}}, status=200)

    job = conn.jobs.wait_for_job_completion("j1", timeout_seconds=30, poll_interval=0.5)
    artifact = conn.artifacts.get_artifact_for_upload_job(job)

    assert job["jobState"] == "FINISHED"
    assert sleeps == [0.5]
    assert artifact["status"] == "PROCESS_COMPLETE"


@responses.activate
def test_wait_for_job_gives_up_after_timeout(conn, base_url, monkeypatch):
    monkeypatch.setattr(ssc_api.time, "sleep", lambda s: None)
    responses.add(responses.GET, f"{base_url}/api/v1/jobs/j2",
                  json={"data": {"id": "j2", "jobState": "RUNNING"}}, status=200)

    job = conn.jobs.wait_for_job_completion("j2", timeout_seconds=0)

    assert job["jobState"] == "RUNNING"
    assert len(responses.calls) == 1


def test_job_and_metrics_query_builders(conn):
    query = conn.jobs.query_jobs(job_class_name="com.x.ArtifactUploadJob", state="RUNNING").build()
    assert dict(query.params)["q"] == "jobClassName:com.x.ArtifactUploadJob and state:RUNNING"
    assert query.paging

    history = conn.metrics.query_variable_history(6).build()
    assert history.path == "/api/v1/projectVersions/6/variableHistories"
    kpis = conn.metrics.query_performance_indicator_history(6).build()
    assert kpis.path == "/api/v1/projectVersions/6/performanceIndicatorHistories"


UPLOAD_XML = ('<?xml version="1.0" encoding="UTF-8"?>'
              '<Result xmlns="xmlns://www.fortify.com/schema/fileupload">'
              '<code>-10001</code><msg>Background submission succeeded.</msg><id>56</id></Result>')


def _file_token_responses(base_url, token):
    responses.add(responses.POST, f"{base_url}/api/v1/fileTokens",
                  json={"data": {"token": token}, "responseCode": 201}, status=201)
    responses.add(responses.DELETE, f"{base_url}/api/v1/fileTokens", json={"responseCode": 200}, status=200)


@responses.activate
def test_upload_artifact_and_wait_processing_completion(conn, base_url, tmp_path):
    fpr = tmp_path / "results.fpr"
    fpr.write_bytes(b"PK\x03\x04fpr-content")
    _file_token_responses(base_url, "up-tok")
    responses.add(responses.POST, f"{base_url}/upload/resultFileUpload.html",
                  body=UPLOAD_XML, content_type="application/xml", status=200)
    responses.add(responses.GET, f"{base_url}/api/v1/jobs/56",
                  json={"data": {"id": 56, "jobState": "FINISHED", "jobData": {"PARAM_ARTIFACT_ID": "44"}}},
                  status=200)
    responses.add(responses.GET, f"{base_url}/api/v1/artifacts/44",
                  json={"data": {"id": 44, "status": "PROCESS_COMPLETE"}}, status=200)

    artifact = conn.artifacts.upload_artifact_and_wait_processing_completion(6, fpr, timeout_seconds=60)

    assert artifact == {"id": 44, "status": "PROCESS_COMPLETE"}
    assert [(c.request.method, urlparse(c.request.url).path) for c in responses.calls] == [
        ("POST", "/ssc/api/v1/fileTokens"),
        ("POST", "/ssc/upload/resultFileUpload.html"),
        ("DELETE", "/ssc/api/v1/fileTokens"),
        ("GET", "/ssc/api/v1/jobs/56"),
        ("GET", "/ssc/api/v1/artifacts/44"),
    ]
    assert json.loads(responses.calls[0].request.body) == {"fileTokenType": "UPLOAD"}
    upload = responses.calls[1].request
    assert parse_qs(urlparse(upload.url).query) == {"mat": ["up-tok"], "entityId": ["6"]}
    assert upload.headers["Content-Type"].startswith("multipart/form-data; boundary=")
    assert b'filename="results.fpr"' in upload.body
    assert b"PK\x03\x04fpr-content" in upload.body


@responses.activate
def test_upload_artifact_parses_result_and_releases_token_on_failure(conn, base_url, tmp_path):
    fpr = tmp_path / "scan.fpr"
    fpr.write_bytes(b"data")
    _file_token_responses(base_url, "up-tok")
    responses.add(responses.POST, f"{base_url}/upload/resultFileUpload.html",
                  body=UPLOAD_XML, content_type="application/xml", status=200)

    result = conn.artifacts.upload_artifact(6, str(fpr))
    assert result == {"code": "-10001", "msg": "Background submission succeeded.", "id": "56"}

    responses.replace(responses.POST, f"{base_url}/upload/resultFileUpload.html",
                      body="denied", status=403)
    with pytest.raises(AuthenticationError):
        conn.artifacts.upload_artifact(6, str(fpr))
    assert responses.calls[-1].request.method == "DELETE"


@responses.activate
def test_download_artifact_writes_file(conn, base_url, tmp_path):
    _file_token_responses(base_url, "down-tok")
    responses.add(responses.GET, f"{base_url}/download/artifactDownload.html",
                  body=b"artifact-bytes", content_type="application/octet-stream", status=200)
    responses.add(responses.GET, f"{base_url}/download/currentStateFprDownload.html",
                  body=b"merged-fpr", content_type="application/octet-stream", status=200)
    target = tmp_path / "artifact.fpr"

    assert conn.artifacts.download_artifact(44, target) == len(b"artifact-bytes")
    assert target.read_bytes() == b"artifact-bytes"
    assert parse_qs(urlparse(responses.calls[1].request.url).query) == {"id": ["44"], "mat": ["down-tok"]}
    assert json.loads(responses.calls[0].request.body) == {"fileTokenType": "DOWNLOAD"}

    merged = tmp_path / "merged.fpr"
    conn.artifacts.download_application_file(6, merged, include_source=True)
    assert merged.read_bytes() == b"merged-fpr"
    params = parse_qs(urlparse(responses.calls[4].request.url).query)
    assert params == {"id": ["6"], "includeSource": ["true"], "mat": ["down-tok"]}


def test_parse_upload_result_variants():
    assert ssc_api.parse_upload_result(b'{"id": 7, "code": 0}') == {"id": 7, "code": 0}
    assert ssc_api.parse_upload_result(b"") == {}
    with pytest.raises(ValueError):
        ssc_api.parse_upload_result(b"<html><body>Login")


@responses.activate
def test_empty_success_bodies_do_not_crash(conn, base_url):
    responses.add(responses.PUT, f"{base_url}/api/v1/projectVersions/6/attributes", body="", status=204)
    responses.add(responses.GET, f"{base_url}/api/v1/attributeDefinitions",
                  json={"data": [{"id": 4, "name": "Owner", "type": "TEXT"}]}, status=200)
    responses.add(responses.GET, f"{base_url}/api/v1/jobs/j3", body="", status=200)
    responses.add(responses.GET, f"{base_url}/api/v1/artifacts/45", body="", status=200)
    responses.add(responses.POST, f"{base_url}/api/v1/validateSearchString", body="", status=204)

    assert conn.attributes.update_application_version_attributes(6, {"Owner": ["me"]}) == []
    assert conn.jobs.get_job("j3") is None
    assert conn.jobs.wait_for_job_completion("j3", timeout_seconds=5) is None
    assert conn.artifacts.get_artifact_by_id(45) is None
    assert conn.issues.validate_issue_search_string("x") is None
