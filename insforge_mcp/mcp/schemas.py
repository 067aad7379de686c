"""
Tool argument models.

Field names are the wire names clients send, so they stay camelCase. Each
model's ``model_json_schema()`` is published as the tool's ``inputSchema``.
"""

from typing import Any, Dict, List, Literal, Optional, get_args
from urllib.parse import urlparse
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

API_KEY_DESCRIPTION = "API key for authentication (optional if provided via --api_key)"

DocType = Literal[
    "instructions",
    "db-sdk",
    "storage-sdk",
    "functions-sdk",
    "ai-integration-sdk",
    "auth-components-react",
    "auth-components-nextjs",
    "real-time",
    "deployment",
]
DOC_TYPES = get_args(DocType)
LogSource = Literal["insforge.logs", "postgREST.logs", "postgres.logs", "function.logs"]
FunctionStatus = Literal["draft", "active"]
HttpMethod = Literal["GET", "POST", "PUT", "PATCH", "DELETE"]

SLUG_PATTERN = r"^[a-zA-Z0-9_-]+$"


class ToolArguments(BaseModel):
    """Base for every tool's arguments."""


class ApiKeyArguments(ToolArguments):
    apiKey: Optional[str] = Field(default=None, description=API_KEY_DESCRIPTION)


# --- Documentation & database -------------------------------------------------

class FetchDocsArgs(ToolArguments):
    docType: DocType = Field(
        description=(
            'Documentation type: "instructions" (essential backend setup, use first), '
            '"db-sdk", "storage-sdk", "functions-sdk", "ai-integration-sdk", '
            '"auth-components-react", "auth-components-nextjs", "real-time" or "deployment"'
        )
    )


class GetAnonKeyArgs(ApiKeyArguments):
    pass


class GetTableSchemaArgs(ApiKeyArguments):
    tableName: str = Field(min_length=1, description="Name of the table")


class GetBackendMetadataArgs(ApiKeyArguments):
    pass


class RunRawSqlArgs(ApiKeyArguments):
    query: str = Field(min_length=1, description="SQL query to execute")
    params: Optional[List[Any]] = Field(
        default=None, description="Positional parameters bound to $1, $2, ... in the query"
    )


class DownloadTemplateArgs(ToolArguments):
    frame: Literal["react", "nextjs"] = Field(
        description="Framework to use for the template (support React and Next.js)"
    )
    projectName: Optional[str] = Field(
        default=None,
        description='Name for the project directory (optional, defaults to "insforge-<frame>")',
    )


class BulkUpsertArgs(ApiKeyArguments):
    table: str = Field(min_length=1, description="Target table name")
    filePath: str = Field(description="Path to CSV or JSON file containing data to import")
    upsertKey: Optional[str] = Field(
        default=None, description="Unique column used to update existing rows instead of inserting"
    )


# --- Storage ------------------------------------------------------------------

class CreateBucketArgs(ApiKeyArguments):
    bucketName: str = Field(min_length=1, description="Name of the bucket to create")
    isPublic: bool = Field(default=True, description="Whether objects in the bucket are publicly readable")


class ListBucketsArgs(ToolArguments):
    pass


class DeleteBucketArgs(ApiKeyArguments):
    bucketName: str = Field(min_length=1, description="Name of the bucket to delete")


# --- Edge functions -----------------------------------------------------------

_CODE_FILE_DESCRIPTION = (
    "Path to JavaScript file containing the function code. Must export: "
    "module.exports = async function(request) { return new Response(...) }"
)


class CreateFunctionArgs(ToolArguments):
    slug: str = Field(pattern=SLUG_PATTERN, description="URL-safe identifier of the function")
    name: str = Field(min_length=1, description="Display name of the function")
    codeFile: str = Field(description=_CODE_FILE_DESCRIPTION)
    description: Optional[str] = Field(default=None, description="What the function does")
    status: FunctionStatus = Field(default="active", description="Deploy as draft or active")


class GetFunctionArgs(ToolArguments):
    slug: str = Field(min_length=1, description="The slug identifier of the function")


class UpdateFunctionArgs(ToolArguments):
    slug: str = Field(min_length=1, description="The slug identifier of the function to update")
    name: Optional[str] = Field(default=None, description="New display name")
    codeFile: Optional[str] = Field(
        default=None,
        description="Path to JavaScript file containing the new function code. "
        "Must export: module.exports = async function(request) { return new Response(...) }",
    )
    description: Optional[str] = Field(default=None, description="New description")
    status: Optional[FunctionStatus] = Field(default=None, description="New status")


class DeleteFunctionArgs(ToolArguments):
    slug: str = Field(min_length=1, description="The slug identifier of the function to delete")


# --- Logs & deployments -------------------------------------------------------

class GetContainerLogsArgs(ApiKeyArguments):
    source: LogSource = Field(description="Log source to retrieve")
    limit: int = Field(default=20, gt=0, description="Number of logs to return (default: 20)")


class DeploymentEnvVar(BaseModel):
    key: str
    value: str


class CreateDeploymentArgs(ToolArguments):
    sourceDirectory: str = Field(
        description=(
            "Absolute path to the source directory containing files to deploy "
            "(e.g., /Users/name/project or C:\\Users\\name\\project). "
            'Do not use relative paths like "."'
        )
    )
    projectSettings: Optional[Dict[str, Any]] = Field(
        default=None,
        description="Build settings such as buildCommand, outputDirectory, installCommand, devCommand, rootDirectory",
    )
    envVars: Optional[List[DeploymentEnvVar]] = Field(
        default=None, description="Environment variables for the deployment as key/value pairs"
    )
    meta: Optional[Dict[str, str]] = Field(default=None, description="Free-form deployment metadata")


# --- Schedules ----------------------------------------------------------------

class UpsertScheduleArgs(ApiKeyArguments):
    id: Optional[UUID] = Field(
        default=None,
        description="The UUID of the schedule to update. If omitted, a new schedule will be created.",
    )
    name: str = Field(min_length=3, description="Schedule name (at least 3 characters)")
    cronSchedule: str = Field(
        description='Cron schedule format (5 or 6 parts, e.g., "0 */2 * * *" for every 2 hours)'
    )
    functionUrl: str = Field(description="The URL to call when the schedule triggers")
    httpMethod: HttpMethod = Field(default="POST", description="HTTP method to use")
    headers: Optional[Dict[str, str]] = Field(
        default=None,
        description='HTTP headers. Values starting with "secret:" will be resolved from secrets store.',
    )
    body: Optional[Dict[str, Any]] = Field(default=None, description="JSON body to send with the request")

    @field_validator("functionUrl")
    @classmethod
    def _check_url(cls, value: str) -> str:
        parsed = urlparse(value)
        if not parsed.scheme or not parsed.netloc:
            raise ValueError("functionUrl must be an absolute URL")
        return value


class GetSchedulesArgs(ApiKeyArguments):
    scheduleId: Optional[UUID] = Field(
        default=None,
        description="Optional: Get a specific schedule by ID. If omitted, returns all schedules.",
    )


class GetScheduleLogsArgs(ApiKeyArguments):
    scheduleId: UUID = Field(description="The UUID of the schedule to get logs for")
    limit: int = Field(default=50, gt=0, description="Number of logs to return (default: 50)")
    offset: int = Field(default=0, ge=0, description="Number of logs to skip (default: 0)")


class DeleteScheduleArgs(ApiKeyArguments):
    scheduleId: UUID = Field(description="The UUID of the schedule to delete")
