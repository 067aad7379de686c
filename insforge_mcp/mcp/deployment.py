"""
create-deployment: package a local directory and hand it to the backend.

The flow is create (presigned upload target) -> zip in memory -> multipart
upload -> start. The first failure stops the flow; nothing is retried.
"""

import io
import os
import re
import logging
import zipfile
from typing import Any, Dict

from insforge_mcp.backend.client import path_segment
from insforge_mcp.backend.response import format_success_message, unwrap
from insforge_mcp.core.errors import BackendRejected, ConfigError, LocalIOError

from . import schemas

logger = logging.getLogger("InsForge.mcp.deployment")

EXCLUDED_PATTERNS = (
    "node_modules",
    ".git",
    ".next",
    "dist",
    "build",
    ".env.local",
    ".DS_Store",
)

_WINDOWS_ABSOLUTE = re.compile(r"^[a-zA-Z]:[/\\]")


def is_absolute_source_path(path: str) -> bool:
    """POSIX or Windows drive absolute paths, checked textually on every OS."""
    return path.startswith("/") or bool(_WINDOWS_ABSOLUTE.match(path))


def is_excluded(relative_name: str) -> bool:
    name = relative_name.replace("\\", "/")
    for pattern in EXCLUDED_PATTERNS:
        if (
            name == pattern
            or name.startswith(pattern + "/")
            or name.endswith("/" + pattern)
            or ("/" + pattern + "/") in name
        ):
            return True
    return name.endswith(".log")


def _raise_walk_error(exc: OSError) -> None:
    raise exc


def build_deployment_zip(source_dir: str) -> bytes:
    """Zip `source_dir` into memory, skipping excluded entries."""
    if not os.path.isdir(source_dir):
        raise LocalIOError(source_dir, f"Source directory '{source_dir}' does not exist or is not a directory")

    buffer = io.BytesIO()
    file_count = 0
    try:
        with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED, compresslevel=9) as archive:
            for root, dirs, files in os.walk(source_dir, onerror=_raise_walk_error):
                rel_root = os.path.relpath(root, source_dir)
                rel_root = "" if rel_root == "." else rel_root.replace(os.sep, "/")
                dirs[:] = sorted(
                    d for d in dirs if not is_excluded(f"{rel_root}/{d}" if rel_root else d)
                )
                for filename in sorted(files):
                    arcname = f"{rel_root}/{filename}" if rel_root else filename
                    if is_excluded(arcname):
                        continue
                    archive.write(os.path.join(root, filename), arcname)
                    file_count += 1
    except OSError as exc:
        raise LocalIOError(
            getattr(exc, "filename", None) or source_dir,
            f"Failed to package '{source_dir}': {exc}",
        ) from exc

    logger.info("Packaged %d files from %s (%d bytes)", file_count, source_dir, buffer.tell())
    return buffer.getvalue()


def _do_create_deployment(ctx, args: schemas.CreateDeploymentArgs) -> str:
    source_dir = args.sourceDirectory
    if not is_absolute_source_path(source_dir):
        raise ConfigError(
            f'sourceDirectory must be an absolute path, not a relative path like "{source_dir}". '
            "Please provide the full path to the source directory (e.g., /Users/name/project on "
            "macOS/Linux or C:\\Users\\name\\project on Windows)."
        )

    api_key = ctx.get_api_key()
    created = unwrap(ctx.client.request("POST", "/api/deployments", api_key=api_key))
    if not isinstance(created, dict) or not created.get("id") or not created.get("uploadUrl"):
        raise BackendRejected(
            "INVALID_RESPONSE", "Deployment creation did not return an id and upload URL"
        )

    deployment_id = created["id"]
    archive = build_deployment_zip(source_dir)

    upload = ctx.client.upload(
        created["uploadUrl"],
        data=dict(created.get("uploadFields") or {}),
        files={"file": ("deployment.zip", archive, "application/zip")},
    )
    if not upload.ok:
        raise BackendRejected(
            f"HTTP_{upload.status_code}",
            f"Failed to upload zip file: {upload.text}",
            status_code=upload.status_code,
        )

    start_body: Dict[str, Any] = {}
    if args.projectSettings:
        start_body["projectSettings"] = args.projectSettings
    if args.envVars:
        start_body["envVars"] = [var.model_dump() for var in args.envVars]
    if args.meta:
        start_body["meta"] = args.meta

    started = unwrap(
        ctx.client.request(
            "POST",
            f"/api/deployments/{path_segment(deployment_id)}/start",
            api_key=api_key,
            json_body=start_body,
        )
    )
    return (
        format_success_message("Deployment started", started)
        + "\n\nNote: You can check deployment status by querying the system.deployments table."
    )
