"""Tests for per-tool request assembly and result text."""

import subprocess

import pytest

from conftest import StubSession, envelope, health_response, make_config, requests_response
from insforge_mcp.core.errors import ToolArgumentsError
from insforge_mcp.mcp import handlers
from insforge_mcp.mcp.registry import ToolRegistry

SCHEDULE_ID = "6f1c2a8e-4b3d-4e5f-9a6b-7c8d9e0f1a2b"


@pytest.fixture
def backend():
    """Build a registered registry over a stub backend at version 1.5.0."""

    def _build(mapping, **config):
        mapping = dict(mapping)
        mapping.setdefault(("GET", "/api/health"), health_response("1.5.0"))
        stub = StubSession(mapping)
        registry = ToolRegistry(make_config(**config), http_session=stub)
        registry.register_all()
        return registry, stub

    return _build


def _text(result):
    return result["content"][0]["text"]


class TestFetchDocs:
    def test_placeholder_urls_are_rewritten(self, backend):
        content = "Call http://localhost:7130/api or https://your-app.region.insforge.app/api"
        registry, stub = backend(
            {("GET", "/api/docs/db-sdk"): requests_response(200, envelope({"content": content}))}
        )

        result = registry.call_tool("fetch-docs", {"docType": "db-sdk"})

        assert _text(result) == "Call http://backend.test/api or http://backend.test/api"
        assert "x-api-key" not in stub.calls_to("GET", "/api/docs/db-sdk")[0]["headers"]

    def test_missing_docs_are_reported_as_text(self, backend):
        registry, _ = backend({("GET", "/api/docs/real-time"): requests_response(404, {"error": "nope"})})

        result = registry.call_tool("fetch-docs", {"docType": "real-time"})

        assert "isError" not in result
        assert _text(result).startswith('Documentation for "real-time" is not available.')

    def test_other_failures_are_reported_as_text(self, backend):
        registry, _ = backend(
            {
                ("GET", "/api/docs/storage-sdk"): requests_response(
                    500, {"success": False, "error": {"code": "DOCS_ERROR", "message": "boom"}}
                )
            }
        )

        result = registry.call_tool("fetch-docs", {"docType": "storage-sdk"})

        assert "isError" not in result
        assert _text(result) == "Error fetching storage-sdk documentation: [DOCS_ERROR] boom"

    def test_unknown_doc_type_is_rejected(self, backend):
        registry, _ = backend({})
        with pytest.raises(ToolArgumentsError):
            registry.call_tool("fetch-docs", {"docType": "everything"})


class TestDatabaseTools:
    def test_get_anon_key(self, backend):
        registry, stub = backend(
            {("POST", "/api/auth/tokens/anon"): requests_response(200, envelope({"accessToken": "anon"}))}
        )

        result = registry.call_tool("get-anon-key", {})

        assert _text(result).startswith("Anonymous token generated completed successfully:\n")
        assert stub.calls_to("POST", "/api/auth/tokens/anon")[0]["headers"]["x-api-key"] == "ik_test"

    def test_get_table_schema_quotes_table_name(self, backend):
        registry, _ = backend(
            {("GET", "/api/metadata/order%20items"): requests_response(200, envelope({"columns": []}))}
        )
        result = registry.call_tool("get-table-schema", {"tableName": "order items"})
        assert _text(result).startswith("Schema retrieved completed successfully:")

    def test_get_backend_metadata(self, backend):
        registry, stub = backend(
            {("GET", "/api/metadata"): requests_response(200, envelope({"tables": ["users"]}))}
        )

        result = registry.call_tool("get-backend-metadata", {})

        assert _text(result) == 'Backend metadata:\n\n{\n  "tables": [\n    "users"\n  ]\n}'
        assert stub.calls_to("GET", "/api/metadata")[0]["params"] == {"mcp": "true"}

    def test_run_raw_sql_defaults_params(self, backend):
        registry, stub = backend(
            {("POST", "/api/database/advance/rawsql"): requests_response(200, envelope({"rows": []}))}
        )

        registry.call_tool("run-raw-sql", {"query": "select 1"})
        registry.call_tool("run-raw-sql", {"query": "select $1", "params": [5]})

        bodies = [c["json"] for c in stub.calls_to("POST", "/api/database/advance/rawsql")]
        assert bodies == [{"query": "select 1", "params": []}, {"query": "select $1", "params": [5]}]

    def test_bulk_upsert_uploads_file(self, backend, tmp_path):
        data_file = tmp_path / "users.csv"
        data_file.write_bytes(b"id,email\n1,a@example.com\n")
        registry, stub = backend(
            {
                ("POST", "/api/database/advance/bulk-upsert"): requests_response(
                    200,
                    envelope({"success": True, "rowsAffected": 1, "totalRecords": 1, "table": "users"}),
                )
            }
        )

        result = registry.call_tool(
            "bulk-upsert", {"table": "users", "filePath": str(data_file), "upsertKey": "id"}
        )

        call = stub.calls_to("POST", "/api/database/advance/bulk-upsert")[0]
        assert call["data"] == {"table": "users", "upsertKey": "id"}
        assert call["files"]["file"] == ("users.csv", b"id,email\n1,a@example.com\n")
        assert "Content-Type" not in call["headers"]
        assert _text(result).startswith('Successfully processed 1 of 1 records into table "users"\n')

    def test_bulk_upsert_missing_file_names_path(self, backend, tmp_path):
        missing = tmp_path / "absent.json"
        registry, stub = backend({})

        result = registry.call_tool("bulk-upsert", {"table": "users", "filePath": str(missing)})

        assert result["isError"] is True
        assert _text(result).startswith(f"Error performing bulk upsert: Failed to read file '{missing}'")
        assert stub.calls_to("POST", "/api/database/advance/bulk-upsert") == []


class TestStorageTools:
    def test_create_bucket_defaults_public(self, backend):
        registry, stub = backend(
            {("POST", "/api/storage/buckets"): requests_response(200, envelope({"bucketName": "avatars"}))}
        )
        registry.call_tool("create-bucket", {"bucketName": "avatars"})
        assert stub.calls_to("POST", "/api/storage/buckets")[0]["json"] == {
            "bucketName": "avatars",
            "isPublic": True,
        }

    def test_delete_bucket(self, backend):
        registry, _ = backend(
            {("DELETE", "/api/storage/buckets/avatars"): requests_response(200, envelope({"message": "Deleted"}))}
        )
        result = registry.call_tool("delete-bucket", {"bucketName": "avatars"})
        assert _text(result).startswith("Deleted\n")


class TestFunctionTools:
    def test_create_function_reads_code_file(self, backend, tmp_path):
        code_file = tmp_path / "hello.js"
        code_file.write_text("module.exports = async function(request) {}", encoding="utf-8")
        registry, stub = backend(
            {("POST", "/api/functions"): requests_response(200, envelope({"slug": "hello"}))}
        )

        result = registry.call_tool(
            "create-function", {"slug": "hello", "name": "Hello", "codeFile": str(code_file)}
        )

        body = stub.calls_to("POST", "/api/functions")[0]["json"]
        assert body["code"] == "module.exports = async function(request) {}"
        assert body["status"] == "active"
        assert _text(result).startswith(f"Edge function 'hello' created successfully from {code_file}")

    def test_code_file_line_endings_are_preserved(self, backend, tmp_path):
        source = b"export default 1;\r\nconst s = `a\r\nb`;\r\n"
        code_file = tmp_path / "crlf.js"
        code_file.write_bytes(source)
        registry, stub = backend(
            {
                ("POST", "/api/functions"): requests_response(200, envelope({"slug": "crlf"})),
                ("PUT", "/api/functions/crlf"): requests_response(200, envelope({"slug": "crlf"})),
            }
        )

        registry.call_tool("create-function", {"slug": "crlf", "name": "Crlf", "codeFile": str(code_file)})
        registry.call_tool("update-function", {"slug": "crlf", "codeFile": str(code_file)})

        expected = source.decode("utf-8")
        assert stub.calls_to("POST", "/api/functions")[0]["json"]["code"] == expected
        assert stub.calls_to("PUT", "/api/functions/crlf")[0]["json"]["code"] == expected

    def test_create_function_rejects_bad_slug(self, backend):
        registry, _ = backend({})
        with pytest.raises(ToolArgumentsError, match="slug"):
            registry.call_tool("create-function", {"slug": "no spaces", "name": "x", "codeFile": "/x.js"})

    def test_create_function_missing_code_file(self, backend, tmp_path):
        registry, stub = backend({})
        missing = tmp_path / "missing.js"

        result = registry.call_tool(
            "create-function", {"slug": "hello", "name": "Hello", "codeFile": str(missing)}
        )

        assert result["isError"] is True
        assert f"Failed to read code file '{missing}'" in _text(result)
        assert stub.calls_to("POST", "/api/functions") == []

    def test_update_function_sends_only_supplied_fields(self, backend):
        registry, stub = backend(
            {("PUT", "/api/functions/hello"): requests_response(200, envelope({"slug": "hello"}))}
        )

        result = registry.call_tool("update-function", {"slug": "hello", "description": ""})

        assert stub.calls_to("PUT", "/api/functions/hello")[0]["json"] == {"description": ""}
        assert _text(result).startswith("Edge function 'hello' updated successfully completed")

    def test_get_and_delete_function(self, backend):
        registry, _ = backend(
            {
                ("GET", "/api/functions/hello"): requests_response(200, envelope({"code": "x"})),
                ("DELETE", "/api/functions/hello"): requests_response(200, envelope(None)),
            }
        )
        assert _text(registry.call_tool("get-function", {"slug": "hello"})).startswith(
            "Edge function 'hello' details"
        )
        assert _text(registry.call_tool("delete-function", {"slug": "hello"})) == (
            "Edge function 'hello' deleted successfully completed successfully:\nnull"
        )


class TestContainerLogs:
    def test_falls_back_to_analytics_route_on_404(self, backend):
        registry, stub = backend(
            {
                ("GET", "/api/logs/postgres.logs"): requests_response(404, "Not Found"),
                ("GET", "/api/logs/analytics/postgres.logs"): requests_response(200, envelope([{"msg": "up"}])),
            }
        )

        result = registry.call_tool("get-container-logs", {"source": "postgres.logs"})

        assert _text(result).startswith("Latest logs from postgres.logs completed successfully:")
        assert stub.calls_to("GET", "/api/logs/analytics/postgres.logs")[0]["params"] == {"limit": 20}

    def test_primary_route(self, backend):
        registry, stub = backend(
            {("GET", "/api/logs/function.logs"): requests_response(200, envelope([]))}
        )
        registry.call_tool("get-container-logs", {"source": "function.logs", "limit": 5})
        assert stub.calls_to("GET", "/api/logs/function.logs")[0]["params"] == {"limit": 5}
        assert stub.calls_to("GET", "/api/logs/analytics/function.logs") == []


class TestScheduleTools:
    def test_upsert_creates_schedule(self, backend):
        registry, stub = backend(
            {("POST", "/api/schedules"): requests_response(200, envelope({"id": SCHEDULE_ID}))}
        )

        result = registry.call_tool(
            "upsert-schedule",
            {"name": "nightly", "cronSchedule": "0 0 * * *", "functionUrl": "https://fn.test/run"},
        )

        assert stub.calls_to("POST", "/api/schedules")[0]["json"] == {
            "name": "nightly",
            "cronSchedule": "0 0 * * *",
            "functionUrl": "https://fn.test/run",
            "httpMethod": "POST",
        }
        assert _text(result).startswith("Schedule 'nightly' created successfully")

    def test_upsert_with_id_updates(self, backend):
        registry, stub = backend({("POST", "/api/schedules"): requests_response(200, envelope({}))})

        result = registry.call_tool(
            "upsert-schedule",
            {
                "id": SCHEDULE_ID,
                "name": "nightly",
                "cronSchedule": "0 0 * * *",
                "functionUrl": "https://fn.test/run",
                "httpMethod": "GET",
                "headers": {"Authorization": "secret:token"},
            },
        )

        body = stub.calls_to("POST", "/api/schedules")[0]["json"]
        assert body["id"] == SCHEDULE_ID
        assert body["headers"] == {"Authorization": "secret:token"}
        assert _text(result).startswith("Schedule 'nightly' updated successfully")

    def test_upsert_validates_name_and_url(self, backend):
        registry, _ = backend({})
        with pytest.raises(ToolArgumentsError):
            registry.call_tool("upsert-schedule", {"name": "ab", "cronSchedule": "* * * * *", "functionUrl": "https://x.test"})
        with pytest.raises(ToolArgumentsError):
            registry.call_tool("upsert-schedule", {"name": "abc", "cronSchedule": "* * * * *", "functionUrl": "not a url"})

    def test_get_schedules(self, backend):
        registry, _ = backend(
            {
                ("GET", "/api/schedules"): requests_response(200, envelope([])),
                ("GET", f"/api/schedules/{SCHEDULE_ID}"): requests_response(200, envelope({})),
            }
        )
        assert _text(registry.call_tool("get-schedules", {})).startswith("All schedules")
        assert _text(registry.call_tool("get-schedules", {"scheduleId": SCHEDULE_ID})).startswith(
            f"Schedule details for ID: {SCHEDULE_ID}"
        )

    def test_get_schedule_logs_pagination(self, backend):
        path = f"/api/schedules/{SCHEDULE_ID}/logs"
        registry, stub = backend({("GET", path): requests_response(200, envelope([]))})

        registry.call_tool("get-schedule-logs", {"scheduleId": SCHEDULE_ID})
        registry.call_tool("get-schedule-logs", {"scheduleId": SCHEDULE_ID, "limit": 10, "offset": 20})

        assert [c["params"] for c in stub.calls_to("GET", path)] == [
            {"limit": 50},
            {"limit": 10, "offset": 20},
        ]

    def test_delete_schedule(self, backend):
        registry, _ = backend(
            {("DELETE", f"/api/schedules/{SCHEDULE_ID}"): requests_response(200, envelope({}))}
        )
        result = registry.call_tool("delete-schedule", {"scheduleId": SCHEDULE_ID})
        assert _text(result).startswith(f"Schedule {SCHEDULE_ID} deleted successfully")


class TestDownloadTemplate:
    @pytest.fixture
    def npx(self, monkeypatch, tmp_path):
        calls = []
        outputs = {"stdout": "Project created successfully", "returncode": 0}

        def fake_run(command, **kwargs):
            calls.append((command, kwargs))
            return subprocess.CompletedProcess(command, outputs["returncode"], outputs["stdout"], "")

        monkeypatch.setattr(handlers.shutil, "which", lambda name: "/usr/bin/npx")
        monkeypatch.setattr(handlers.subprocess, "run", fake_run)
        monkeypatch.setattr(handlers.tempfile, "gettempdir", lambda: str(tmp_path))
        return calls, outputs

    def test_runs_scaffolder_with_anon_key(self, backend, npx, tmp_path):
        calls, _ = npx
        stale = tmp_path / "insforge-react"
        stale.mkdir()
        (stale / "old.txt").write_text("old")
        registry, _ = backend(
            {("POST", "/api/auth/tokens/anon"): requests_response(200, envelope({"accessToken": "anon-123"}))}
        )

        result = registry.call_tool("download-template", {"frame": "react"})

        command, kwargs = calls[0]
        assert command == [
            "/usr/bin/npx", "create-insforge-app", "insforge-react",
            "--frame", "react",
            "--base-url", "http://backend.test",
            "--anon-key", "anon-123",
            "--skip-install",
        ]
        assert kwargs["cwd"] == str(tmp_path)
        assert not stale.exists()
        assert f"Template Location: {stale}" in _text(result)

    def test_error_output_is_a_failure(self, backend, npx):
        _, outputs = npx
        outputs["stdout"] = "npm ERR! error while fetching"
        registry, _ = backend(
            {("POST", "/api/auth/tokens/anon"): requests_response(200, envelope({"accessToken": "anon"}))}
        )

        result = registry.call_tool("download-template", {"frame": "nextjs", "projectName": "site"})

        assert result["isError"] is True
        assert _text(result).startswith("Error downloading template: Failed to download template:")

    def test_project_name_must_be_plain(self, backend, npx):
        calls, _ = npx
        registry, _ = backend(
            {("POST", "/api/auth/tokens/anon"): requests_response(200, envelope({"accessToken": "anon"}))}
        )

        result = registry.call_tool("download-template", {"frame": "react", "projectName": "../escape"})

        assert result["isError"] is True
        assert calls == []
