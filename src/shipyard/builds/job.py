"""Build job rendering: the in-container script and the batch/v1 Job manifest.

Pure functions, no I/O. The job receives per-job presigned URLs for the
source bundle and the artifact, and the callback token through a secret
reference. No object-store credentials are embedded.
"""

from __future__ import annotations

import re
import shlex
from dataclasses import dataclass, field
from typing import Any

from shipyard.config import settings
from shipyard.db.models import App, BuildSource

MAX_JOB_NAME_LENGTH = 63
LABEL_PREFIX = "shipyard.dev"

_INVALID_DNS_CHARS = re.compile(r"[^a-z0-9-]+")


def _dns_label(value: str) -> str:
    return _INVALID_DNS_CHARS.sub("-", value.lower()).strip("-")


def job_name(app_id: object, build_id: object) -> str:
    """Deterministic DNS-1123 job name ``build-{appId}-{buildId}``.

    When the full name exceeds 63 characters the ids lose their dashes and
    the app id is truncated; the build id is kept whole so names stay unique.
    """
    app_part = _dns_label(str(app_id))
    build_part = _dns_label(str(build_id))
    name = f"build-{app_part}-{build_part}"
    if len(name) <= MAX_JOB_NAME_LENGTH:
        return name

    app_part = app_part.replace("-", "")
    build_part = build_part.replace("-", "")
    room = MAX_JOB_NAME_LENGTH - len("build--") - len(build_part)
    if room < 1:
        build_part = build_part[: MAX_JOB_NAME_LENGTH - len("build-x-")]
        room = 1
    return f"build-{app_part[:room]}-{build_part}"


def callback_url(build_id: object) -> str:
    return f"{settings.callback_base_url.rstrip('/')}/api/app_builds/{build_id}/status"


@dataclass
class BuildJobOptions:
    """Per-job knobs for the build container."""

    callback_url: str | None = None
    source_download_url: str | None = None
    artifact_upload_url: str | None = None
    cpu_request: str = field(default_factory=lambda: settings.build_cpu_request)
    cpu_limit: str = field(default_factory=lambda: settings.build_cpu_limit)
    memory_request: str = field(default_factory=lambda: settings.build_memory_request)
    memory_limit: str = field(default_factory=lambda: settings.build_memory_limit)

    @property
    def source(self) -> BuildSource:
        return BuildSource.UPLOAD if self.source_download_url else BuildSource.GIT

    @property
    def uploads_artifact(self) -> bool:
        return self.artifact_upload_url is not None


def _report_status_function(app: App, options: BuildJobOptions) -> str:
    if not options.callback_url:
        return 'report_status() {\n  echo "Status: $1 - $2"\n}'
    return "\n".join(
        [
            "report_status() {",
            '  echo "Reporting status: $1 - $2"',
            "  payload=$(jq -n \\",
            f"    --arg appId {shlex.quote(str(app.id))} \\",
            f"    --arg orgId {shlex.quote(str(app.organization_id))} \\",
            '    --arg status "$1" \\',
            '    --arg message "$2" \\',
            "    '{appId: $appId, orgId: $orgId, status: $status, message: $message}')",
            f"  curl --globoff -sS -X PATCH {shlex.quote(options.callback_url)} \\",
            '    -H "Content-Type: application/json" \\',
            '    -H "Authorization: Bearer $CALLBACK_TOKEN" \\',
            '    -d "$payload" || echo "Failed to report status"',
            "}",
        ]
    )


def render_build_script(app: App, build_id: object, options: BuildJobOptions) -> str:
    """Render the POSIX shell script run inside the build container.

    Each phase prints a ``=== <step> ===`` marker. Any failing step reports
    ``error`` through the callback and exits non-zero; an exit trap reports
    failures no step caught.
    """
    q = shlex.quote
    upload = options.source is BuildSource.UPLOAD
    tools = "curl jq tar zip " + ("unzip" if upload else "git openssh-client")

    lines = [
        "#!/bin/sh",
        "",
        _report_status_function(app, options),
        "",
        'REPORTED=""',
        "fail() {",
        '  REPORTED=1',
        '  echo "ERROR: $1"',
        '  report_status "error" "$1"',
        "  exit 1",
        "}",
        "",
        "on_exit() {",
        "  code=$?",
        '  if [ "$code" -ne 0 ] && [ -z "$REPORTED" ]; then',
        '    report_status "error" "Build script failed unexpectedly (exit $code)"',
        "  fi",
        "}",
        "trap on_exit EXIT",
        "",
        'echo "=== Starting build process ==="',
        f"echo App ID: {q(str(app.id))}",
        f"echo Build ID: {q(str(build_id))}",
        f"echo Source: {q(options.source.value)}",
        f"echo Build command: {q(app.build_command)}",
        'report_status "building" "Starting build process"',
        "",
        'echo "=== Installing build tools ==="',
        f'apk add --no-cache {tools} || fail "Failed to install system dependencies"',
        "",
        "mkdir -p /workspace",
        "cd /workspace",
        "",
    ]

    if upload:
        lines += [
            'echo "=== Downloading source bundle ==="',
            'curl -fsS -o /workspace/source.zip "$SOURCE_URL" || fail "Failed to download source bundle"',
            "mkdir -p /workspace/src",
            'unzip -q /workspace/source.zip -d /workspace/src || fail "Failed to unzip source bundle"',
            "cd /workspace/src",
        ]
    else:
        lines += [
            f"echo {q('=== Cloning repository: ' + app.git_repo_url + ' ===')}",
            f'git clone {q(app.git_repo_url)} repo || fail "Failed to clone repository"',
            "cd repo",
            f"echo {q('=== Checking out branch: ' + app.git_repo_branch + ' ===')}",
            f"git checkout {q(app.git_repo_branch)} || fail {q('Failed to checkout branch ' + app.git_repo_branch)}",
        ]

    if app.git_repo_path:
        lines += [
            "",
            f"echo {q('=== Entering path: ' + app.git_repo_path + ' ===')}",
            f"cd {q(app.git_repo_path)} || fail {q('Failed to enter path ' + app.git_repo_path)}",
        ]

    lines += [
        "",
        'report_status "building" "Installing project dependencies"',
        'echo "=== Installing project dependencies ==="',
        'if [ -f "package.json" ]; then',
        '  bun install || fail "Failed to install dependencies"',
        "else",
        '  echo "No package.json found, skipping dependency installation"',
        "fi",
        "",
        'report_status "building" "Running build command"',
        f"echo {q('=== Running build command: ' + app.build_command + ' ===')}",
        f'sh -c {q(app.build_command)} || fail "Build command failed"',
        "",
    ]

    if options.uploads_artifact:
        output = q(app.output_path)
        lines += [
            'report_status "building" "Packaging artifact"',
            f"echo {q('=== Packaging artifact from ' + app.output_path + ' ===')}",
            f"[ -d {output} ] || fail {q('Output path ' + app.output_path + ' not found')}",
            f'tar -czf /tmp/artifact.tar.gz -C {output} . || fail "Failed to package artifact"',
            'echo "=== Uploading artifact ==="',
            'curl -fsS -X PUT -H "Content-Type: application/gzip" \\',
            '  --upload-file /tmp/artifact.tar.gz "$ARTIFACT_URL" || fail "Failed to upload artifact"',
            "rm -f /tmp/artifact.tar.gz",
            "",
        ]

    lines += [
        'echo "=== Build completed ==="',
        "REPORTED=1",
        'report_status "ready" "Build completed successfully"',
        "",
    ]
    return "\n".join(lines)


def job_labels(app: App, build_id: object) -> dict[str, str]:
    return {
        f"{LABEL_PREFIX}/app-id": str(app.id),
        f"{LABEL_PREFIX}/build-id": str(build_id),
        f"{LABEL_PREFIX}/org-id": str(app.organization_id),
        f"{LABEL_PREFIX}/component": "build-job",
    }


def build_job_manifest(
    app: App,
    build_id: object,
    options: BuildJobOptions,
    *,
    namespace: str | None = None,
) -> dict[str, Any]:
    """Render the batch/v1 Job that builds ``app`` for ``build_id``."""
    labels = job_labels(app, build_id)

    env_vars: list[dict[str, Any]] = [
        {"name": "APP_ID", "value": str(app.id)},
        {"name": "BUILD_ID", "value": str(build_id)},
        {"name": "NODE_ENV", "value": "production"},
        {
            "name": "CALLBACK_TOKEN",
            "valueFrom": {
                "secretKeyRef": {
                    "name": settings.callback_secret_name,
                    "key": settings.callback_secret_key,
                }
            },
        },
    ]
    if options.source_download_url:
        env_vars.append({"name": "SOURCE_URL", "value": options.source_download_url})
    if options.artifact_upload_url:
        env_vars.append({"name": "ARTIFACT_URL", "value": options.artifact_upload_url})

    resources = {
        "requests": {"cpu": options.cpu_request, "memory": options.memory_request},
        "limits": {"cpu": options.cpu_limit, "memory": options.memory_limit},
    }

    return {
        "apiVersion": "batch/v1",
        "kind": "Job",
        "metadata": {
            "name": job_name(app.id, build_id),
            "namespace": namespace or settings.k8s_namespace,
            "labels": labels,
        },
        "spec": {
            "ttlSecondsAfterFinished": settings.build_job_ttl_seconds,
            "activeDeadlineSeconds": settings.build_active_deadline_seconds,
            "backoffLimit": 0,
            "template": {
                "metadata": {"labels": labels},
                "spec": {
                    "restartPolicy": "Never",
                    "automountServiceAccountToken": False,
                    "containers": [
                        {
                            "name": "build",
                            "image": settings.build_image,
                            "workingDir": "/workspace",
                            "command": ["/bin/sh"],
                            "args": ["-c", render_build_script(app, build_id, options)],
                            "env": env_vars,
                            "resources": resources,
                        }
                    ],
                },
            },
        },
    }
