import os
import json
import shutil
import logging
import tempfile
import subprocess
from typing import Any, Dict, Union

from insforge_mcp.backend.client import path_segment
from insforge_mcp.backend.response import format_success_message, unwrap
from insforge_mcp.core.errors import (
    BackendRejected,
    ConfigError,
    InsForgeError,
    LocalIOError,
)

from . import schemas

logger = logging.getLogger("InsForge.mcp.handlers")

ToolOutput = Union[str, Dict[str, Any]]

DOCS_NOT_FOUND_MESSAGE = (
    "Documentation not found. This feature may not be supported in your project version. "
    "Please contact the Insforge team for assistance."
)
DOC_PLACEHOLDER_URLS = ("http://localhost:7130", "https://your-app.region.insforge.app")
TEMPLATE_TIMEOUT_SEC = 300.0
_FRAME_LABELS = {"react": "React", "nextjs": "Next.js"}


def text_result(text: str, is_error: bool = False) -> Dict[str, Any]:
    """Build a tools/call result with a single text block."""
    result: Dict[str, Any] = {"content": [{"type": "text", "text": text}]}
    if is_error:
        result["isError"] = True
    return result


def read_local_file(path: str, *, binary: bool = False, label: str = "file") -> Union[str, bytes]:
    try:
        if binary:
            with open(path, "rb") as handle:
                return handle.read()
        with open(path, "r", encoding="utf-8", newline="") as handle:
            return handle.read()
    except (OSError, UnicodeDecodeError) as exc:
        detail = getattr(exc, "strerror", None) or str(exc)
        raise LocalIOError(path, f"Failed to read {label} '{path}': {detail}") from exc


def fetch_documentation(ctx, doc_type: str) -> str:
    """Fetch one documentation page with placeholder URLs pointed at this backend."""
    response = ctx.client.request("GET", f"/api/docs/{path_segment(doc_type)}")
    if response.status_code == 404:
        raise BackendRejected("NOT_FOUND", DOCS_NOT_FOUND_MESSAGE, status_code=404)

    result = unwrap(response)
    if not isinstance(result, dict) or not isinstance(result.get("content"), str):
        raise BackendRejected(
            "INVALID_RESPONSE",
            "Invalid response format from documentation endpoint",
            status_code=response.status_code,
        )

    content = result["content"]
    for placeholder in DOC_PLACEHOLDER_URLS:
        content = content.replace(placeholder, ctx.client.base_url)
    return content


# --- Documentation ------------------------------------------------------------

def _do_fetch_docs(ctx, args: schemas.FetchDocsArgs) -> ToolOutput:
    doc_type = args.docType
    try:
        return fetch_documentation(ctx, doc_type)
    except InsForgeError as exc:
        message = str(exc)
        not_found = getattr(exc, "status_code", None) == 404 or "not found" in message.lower()
        if not_found or "404" in message:
            return text_result(
                f'Documentation for "{doc_type}" is not available. This is likely because your '
                "backend version is too old and doesn't support this documentation endpoint yet. "
                "This won't affect the functionality of the tools - they will still work correctly."
            )
        logger.warning("Unable to retrieve %s documentation: %s", doc_type, message)
        return text_result(f"Error fetching {doc_type} documentation: {message}")


# --- Auth & database ----------------------------------------------------------

def _do_get_anon_key(ctx, args: schemas.GetAnonKeyArgs) -> ToolOutput:
    api_key = ctx.get_api_key(args.apiKey)
    result = unwrap(ctx.client.request("POST", "/api/auth/tokens/anon", api_key=api_key))
    return format_success_message("Anonymous token generated", result)


def _do_get_table_schema(ctx, args: schemas.GetTableSchemaArgs) -> ToolOutput:
    api_key = ctx.get_api_key(args.apiKey)
    response = ctx.client.request(
        "GET", f"/api/metadata/{path_segment(args.tableName)}", api_key=api_key
    )
    return format_success_message("Schema retrieved", unwrap(response))


def _do_get_backend_metadata(ctx, args: schemas.GetBackendMetadataArgs) -> ToolOutput:
    api_key = ctx.get_api_key(args.apiKey)
    response = ctx.client.request("GET", "/api/metadata", api_key=api_key, params={"mcp": "true"})
    metadata = unwrap(response)
    return f"Backend metadata:\n\n{json.dumps(metadata, indent=2, ensure_ascii=False)}"


def _do_run_raw_sql(ctx, args: schemas.RunRawSqlArgs) -> ToolOutput:
    api_key = ctx.get_api_key(args.apiKey)
    response = ctx.client.request(
        "POST",
        "/api/database/advance/rawsql",
        api_key=api_key,
        json_body={"query": args.query, "params": args.params or []},
    )
    return format_success_message("SQL query executed", unwrap(response))


def _do_download_template(ctx, args: schemas.DownloadTemplateArgs) -> ToolOutput:
    api_key = ctx.get_api_key()
    token = unwrap(ctx.client.request("POST", "/api/auth/tokens/anon", api_key=api_key))
    anon_key = token.get("accessToken") if isinstance(token, dict) else None
    if not anon_key:
        raise BackendRejected("MISSING_ANON_KEY", "Failed to retrieve anon key from backend")

    target_dir = args.projectName or f"insforge-{args.frame}"
    if os.path.basename(target_dir) != target_dir or target_dir in (".", ".."):
        raise ConfigError(f"projectName must be a plain directory name, got {target_dir!r}")

    temp_dir = tempfile.gettempdir()
    template_path = os.path.join(temp_dir, target_dir)
    logger.info("download-template target path: %s", template_path)
    if os.path.isdir(template_path):
        logger.info("Removing existing template at %s", template_path)
        shutil.rmtree(template_path, ignore_errors=True)

    npx = shutil.which("npx")
    if npx is None:
        raise LocalIOError("npx", "npx was not found on PATH; install Node.js to download templates")

    command = [
        npx, "create-insforge-app", target_dir,
        "--frame", args.frame,
        "--base-url", ctx.client.base_url,
        "--anon-key", anon_key,
        "--skip-install",
    ]
    try:
        completed = subprocess.run(
            command,
            cwd=temp_dir,
            capture_output=True,
            text=True,
            timeout=TEMPLATE_TIMEOUT_SEC,
        )
    except (OSError, subprocess.TimeoutExpired) as exc:
        raise LocalIOError(template_path, f"Failed to download template: {exc}") from exc

    output = completed.stdout or completed.stderr or ""
    failed = "error" in output.lower() and "successfully" not in output
    if completed.returncode != 0 or failed:
        raise LocalIOError(template_path, f"Failed to download template: {output.strip()}")

    frame_label = _FRAME_LABELS.get(args.frame, args.frame)
    return (
        f"✅ {frame_label} template downloaded successfully\n\n"
        f"📁 Template Location: {template_path}\n\n"
        "⚠️  IMPORTANT: The template is in a temporary directory and NOT in your current working directory.\n\n"
        "🔴 CRITICAL NEXT STEP REQUIRED:\n"
        "You MUST copy ALL files (INCLUDING HIDDEN FILES like .env, .gitignore, etc.) "
        "from the temporary directory to your current project directory.\n\n"
        f"Copy all files from: {template_path}\n"
        "To: Your current project directory\n"
    )


def _do_bulk_upsert(ctx, args: schemas.BulkUpsertArgs) -> ToolOutput:
    api_key = ctx.get_api_key(args.apiKey)
    payload = read_local_file(args.filePath, binary=True)
    form: Dict[str, Any] = {"table": args.table}
    if args.upsertKey:
        form["upsertKey"] = args.upsertKey

    response = ctx.client.request(
        "POST",
        "/api/database/advance/bulk-upsert",
        api_key=api_key,
        data=form,
        files={"file": (os.path.basename(args.filePath) or "data.csv", payload)},
    )
    result = unwrap(response)
    if not isinstance(result, dict):
        result = {}

    if result.get("success"):
        message = (
            f"Successfully processed {result.get('rowsAffected')} of "
            f"{result.get('totalRecords')} records into table \"{result.get('table')}\""
        )
    else:
        message = result.get("message") or "Bulk upsert operation completed"

    return format_success_message(
        "Bulk upsert completed",
        {
            "message": message,
            "table": result.get("table"),
            "rowsAffected": result.get("rowsAffected"),
            "totalRecords": result.get("totalRecords"),
            "errors": result.get("errors"),
        },
    )


# --- Storage ------------------------------------------------------------------

def _do_create_bucket(ctx, args: schemas.CreateBucketArgs) -> ToolOutput:
    api_key = ctx.get_api_key(args.apiKey)
    response = ctx.client.request(
        "POST",
        "/api/storage/buckets",
        api_key=api_key,
        json_body={"bucketName": args.bucketName, "isPublic": args.isPublic},
    )
    return format_success_message("Bucket created", unwrap(response))


def _do_list_buckets(ctx, args: schemas.ListBucketsArgs) -> ToolOutput:
    response = ctx.client.request("GET", "/api/storage/buckets", api_key=ctx.get_api_key())
    return format_success_message("Buckets retrieved", unwrap(response))


def _do_delete_bucket(ctx, args: schemas.DeleteBucketArgs) -> ToolOutput:
    api_key = ctx.get_api_key(args.apiKey)
    response = ctx.client.request(
        "DELETE", f"/api/storage/buckets/{path_segment(args.bucketName)}", api_key=api_key
    )
    return format_success_message("Bucket deleted", unwrap(response))


# --- Edge functions -----------------------------------------------------------

def _do_create_function(ctx, args: schemas.CreateFunctionArgs) -> ToolOutput:
    code = read_local_file(args.codeFile, label="code file")
    response = ctx.client.request(
        "POST",
        "/api/functions",
        api_key=ctx.get_api_key(),
        json_body={
            "slug": args.slug,
            "name": args.name,
            "code": code,
            "description": args.description,
            "status": args.status,
        },
    )
    return format_success_message(
        f"Edge function '{args.slug}' created successfully from {args.codeFile}", unwrap(response)
    )


def _do_get_function(ctx, args: schemas.GetFunctionArgs) -> ToolOutput:
    response = ctx.client.request(
        "GET", f"/api/functions/{path_segment(args.slug)}", api_key=ctx.get_api_key()
    )
    return format_success_message(f"Edge function '{args.slug}' details", unwrap(response))


def _do_update_function(ctx, args: schemas.UpdateFunctionArgs) -> ToolOutput:
    update: Dict[str, Any] = {}
    if args.name:
        update["name"] = args.name
    if args.codeFile:
        update["code"] = read_local_file(args.codeFile, label="code file")
    if args.description is not None:
        update["description"] = args.description
    if args.status:
        update["status"] = args.status

    response = ctx.client.request(
        "PUT",
        f"/api/functions/{path_segment(args.slug)}",
        api_key=ctx.get_api_key(),
        json_body=update,
    )
    file_info = f" from {args.codeFile}" if args.codeFile else ""
    return format_success_message(
        f"Edge function '{args.slug}' updated successfully{file_info}", unwrap(response)
    )


def _do_delete_function(ctx, args: schemas.DeleteFunctionArgs) -> ToolOutput:
    response = ctx.client.request(
        "DELETE", f"/api/functions/{path_segment(args.slug)}", api_key=ctx.get_api_key()
    )
    return format_success_message(f"Edge function '{args.slug}' deleted successfully", unwrap(response))


# --- Logs ---------------------------------------------------------------------

def _do_get_container_logs(ctx, args: schemas.GetContainerLogsArgs) -> ToolOutput:
    api_key = ctx.get_api_key(args.apiKey)
    params = {"limit": args.limit}
    source = path_segment(args.source)
    response = ctx.client.request("GET", f"/api/logs/{source}", api_key=api_key, params=params)
    if response.status_code == 404:
        # Backends before the logs rename only serve the analytics route.
        response = ctx.client.request(
            "GET", f"/api/logs/analytics/{source}", api_key=api_key, params=params
        )
    return format_success_message(f"Latest logs from {args.source}", unwrap(response))


# --- Schedules ----------------------------------------------------------------

def _do_upsert_schedule(ctx, args: schemas.UpsertScheduleArgs) -> ToolOutput:
    ctx.check_tool_version("upsert-schedule")
    api_key = ctx.get_api_key(args.apiKey)
    body: Dict[str, Any] = {
        "name": args.name,
        "cronSchedule": args.cronSchedule,
        "functionUrl": args.functionUrl,
        "httpMethod": args.httpMethod,
    }
    if args.id:
        body["id"] = str(args.id)
    if args.headers:
        body["headers"] = args.headers
    if args.body:
        body["body"] = args.body

    result = unwrap(ctx.client.request("POST", "/api/schedules", api_key=api_key, json_body=body))
    action = "updated" if args.id else "created"
    return format_success_message(f"Schedule '{args.name}' {action} successfully", result)


def _do_get_schedules(ctx, args: schemas.GetSchedulesArgs) -> ToolOutput:
    ctx.check_tool_version("get-schedules")
    api_key = ctx.get_api_key(args.apiKey)
    if args.scheduleId:
        path = f"/api/schedules/{args.scheduleId}"
        label = f"Schedule details for ID: {args.scheduleId}"
    else:
        path = "/api/schedules"
        label = "All schedules"
    return format_success_message(label, unwrap(ctx.client.request("GET", path, api_key=api_key)))


def _do_get_schedule_logs(ctx, args: schemas.GetScheduleLogsArgs) -> ToolOutput:
    ctx.check_tool_version("get-schedule-logs")
    api_key = ctx.get_api_key(args.apiKey)
    params = {"limit": args.limit}
    if args.offset:
        params["offset"] = args.offset
    response = ctx.client.request(
        "GET", f"/api/schedules/{args.scheduleId}/logs", api_key=api_key, params=params
    )
    return format_success_message(f"Execution logs for schedule {args.scheduleId}", unwrap(response))


def _do_delete_schedule(ctx, args: schemas.DeleteScheduleArgs) -> ToolOutput:
    ctx.check_tool_version("delete-schedule")
    api_key = ctx.get_api_key(args.apiKey)
    response = ctx.client.request("DELETE", f"/api/schedules/{args.scheduleId}", api_key=api_key)
    return format_success_message(f"Schedule {args.scheduleId} deleted successfully", unwrap(response))
