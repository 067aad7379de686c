from dataclasses import dataclass
from typing import Any, Callable, Tuple, Type

from . import handlers, schemas
from .deployment import _do_create_deployment


@dataclass(frozen=True)
class ToolSpec:
    name: str
    description: str
    arguments: Type[schemas.ToolArguments]
    handler: Callable[[Any, Any], Any]
    # Used as "Error <error_label>: <message>" when the call fails.
    error_label: str


TOOL_SPECS: Tuple[ToolSpec, ...] = (
    ToolSpec(
        name="fetch-docs",
        description=(
            'Fetch Insforge documentation. Use "instructions" for essential backend setup '
            "(MANDATORY FIRST), or select specific SDK docs for database, auth, storage, "
            "functions, or AI integration."
        ),
        arguments=schemas.FetchDocsArgs,
        handler=handlers._do_fetch_docs,
        error_label="fetching documentation",
    ),
    ToolSpec(
        name="get-anon-key",
        description=(
            "Generate an anonymous JWT token that never expires. Requires admin API key. "
            "Use this for client-side applications that need public access."
        ),
        arguments=schemas.GetAnonKeyArgs,
        handler=handlers._do_get_anon_key,
        error_label="generating anonymous token",
    ),
    ToolSpec(
        name="get-table-schema",
        description=(
            "Returns the detailed schema(including RLS, indexes, constraints, etc.) of a specific table"
        ),
        arguments=schemas.GetTableSchemaArgs,
        handler=handlers._do_get_table_schema,
        error_label="getting table schema",
    ),
    ToolSpec(
        name="get-backend-metadata",
        description="Index all backend metadata",
        arguments=schemas.GetBackendMetadataArgs,
        handler=handlers._do_get_backend_metadata,
        error_label="retrieving backend metadata",
    ),
    ToolSpec(
        name="run-raw-sql",
        description=(
            "Execute raw SQL query with optional parameters. Admin access required. "
            "Use with caution as it can modify data directly."
        ),
        arguments=schemas.RunRawSqlArgs,
        handler=handlers._do_run_raw_sql,
        error_label="executing SQL query",
    ),
    ToolSpec(
        name="download-template",
        description=(
            "CRITICAL: MANDATORY FIRST STEP for all new InsForge projects. Download pre-configured "
            "starter template to a temporary directory. After download, you MUST copy files to "
            "current directory using the provided command."
        ),
        arguments=schemas.DownloadTemplateArgs,
        handler=handlers._do_download_template,
        error_label="downloading template",
    ),
    ToolSpec(
        name="bulk-upsert",
        description=(
            "Bulk insert or update data from CSV or JSON file. "
            "Supports upsert operations with a unique key."
        ),
        arguments=schemas.BulkUpsertArgs,
        handler=handlers._do_bulk_upsert,
        error_label="performing bulk upsert",
    ),
    ToolSpec(
        name="create-bucket",
        description="Create new storage bucket",
        arguments=schemas.CreateBucketArgs,
        handler=handlers._do_create_bucket,
        error_label="creating bucket",
    ),
    ToolSpec(
        name="list-buckets",
        description="Lists all storage buckets",
        arguments=schemas.ListBucketsArgs,
        handler=handlers._do_list_buckets,
        error_label="listing buckets",
    ),
    ToolSpec(
        name="delete-bucket",
        description="Deletes a storage bucket",
        arguments=schemas.DeleteBucketArgs,
        handler=handlers._do_delete_bucket,
        error_label="deleting bucket",
    ),
    ToolSpec(
        name="create-function",
        description=(
            "Create a new edge function that runs in Deno runtime. "
            "The code must be written to a file first for version control"
        ),
        arguments=schemas.CreateFunctionArgs,
        handler=handlers._do_create_function,
        error_label="creating function",
    ),
    ToolSpec(
        name="get-function",
        description="Get details of a specific edge function including its code",
        arguments=schemas.GetFunctionArgs,
        handler=handlers._do_get_function,
        error_label="getting function",
    ),
    ToolSpec(
        name="update-function",
        description="Update an existing edge function code or metadata",
        arguments=schemas.UpdateFunctionArgs,
        handler=handlers._do_update_function,
        error_label="updating function",
    ),
    ToolSpec(
        name="delete-function",
        description="Delete an edge function permanently",
        arguments=schemas.DeleteFunctionArgs,
        handler=handlers._do_delete_function,
        error_label="deleting function",
    ),
    ToolSpec(
        name="get-container-logs",
        description=(
            "Get latest logs from a specific container/service. "
            "Use this to help debug problems with your app."
        ),
        arguments=schemas.GetContainerLogsArgs,
        handler=handlers._do_get_container_logs,
        error_label="retrieving container logs",
    ),
    ToolSpec(
        name="create-deployment",
        description=(
            "Deploy source code from a directory. This tool zips files, uploads to cloud storage, "
            "and triggers deployment with optional environment variables and project settings."
        ),
        arguments=schemas.CreateDeploymentArgs,
        handler=_do_create_deployment,
        error_label="creating deployment",
    ),
    ToolSpec(
        name="upsert-schedule",
        description=(
            "Create or update a cron job schedule. If id is provided, updates existing schedule; "
            "otherwise creates a new one."
        ),
        arguments=schemas.UpsertScheduleArgs,
        handler=handlers._do_upsert_schedule,
        error_label="upserting schedule",
    ),
    ToolSpec(
        name="get-schedules",
        description="List all cron job schedules",
        arguments=schemas.GetSchedulesArgs,
        handler=handlers._do_get_schedules,
        error_label="retrieving schedules",
    ),
    ToolSpec(
        name="get-schedule-logs",
        description="Get execution logs for a specific schedule with pagination",
        arguments=schemas.GetScheduleLogsArgs,
        handler=handlers._do_get_schedule_logs,
        error_label="retrieving schedule logs",
    ),
    ToolSpec(
        name="delete-schedule",
        description="Delete a cron job schedule permanently",
        arguments=schemas.DeleteScheduleArgs,
        handler=handlers._do_delete_schedule,
        error_label="deleting schedule",
    ),
)

READ_ONLY_TOOLS = {
    "fetch-docs", "get-table-schema", "get-backend-metadata", "list-buckets",
    "get-function", "get-container-logs", "get-schedules", "get-schedule-logs",
}

DESTRUCTIVE_TOOLS = {
    "run-raw-sql", "bulk-upsert", "delete-bucket", "update-function",
    "delete-function", "upsert-schedule", "delete-schedule",
}

IDEMPOTENT_TOOLS = READ_ONLY_TOOLS.union({
    "delete-bucket", "delete-function", "delete-schedule", "update-function",
})
