"""Deployment report generation.

Writes a human-readable ``deployment-info.txt`` with the final image
reference, the registry, and copy-paste commands for pulling, running and
rolling out the image. The kubectl commands are documentation only; the
pipeline never invokes them.
"""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

from rich.console import Console
from rich.panel import Panel

from shipwright.config import RegistryConfig, ReportConfig
from shipwright.logging import get_logger
from shipwright.models import RunState

REPORT_TEMPLATE = """\
Deployment information
======================

Application : {name}
Version     : {version}
Run         : {run_id}
Generated   : {generated}

Image       : {image}
Latest      : {latest}
Registry    : {registry_url}
Project     : {project}
Pushed      : {pushed}
{digests}
Pull and run locally
--------------------
docker pull {image}
docker run --rm -p 8080:8080 {image}

Deploy to Kubernetes
--------------------
kubectl -n {namespace} set image deployment/{name} {name}={image}
kubectl -n {namespace} rollout status deployment/{name}
"""


class ReportGenerator:
    """Emits the deployment summary artifact."""

    def __init__(
        self,
        config: ReportConfig,
        registry: RegistryConfig,
        console: Console | None = None,
    ) -> None:
        self.config = config
        self.registry = registry
        self.console = console or Console(stderr=True)
        self.logger = get_logger(__name__)

    def render(self, state: RunState) -> str:
        """Render the report text for a run."""
        image = state.require_image()
        pushed = state.params.push and bool(state.digests)

        digests = ""
        if state.digests:
            digests = "".join(
                f"Digest      : {tag} -> {digest or 'unknown'}\n"
                for tag, digest in state.digests.items()
            )

        return REPORT_TEMPLATE.format(
            name=image.name,
            version=state.params.version,
            run_id=state.params.run_id,
            generated=datetime.now(timezone.utc).isoformat(timespec="seconds"),
            image=image.versioned,
            latest=image.latest,
            registry_url=f"https://{self.registry.url}",
            project=image.project,
            pushed="yes" if pushed else "no",
            digests=digests,
            namespace=self.config.namespace,
        )

    def write(self, state: RunState) -> Path:
        """Write the report and print a summary panel.

        Returns:
            Path of the written report
        """
        directory = self.config.directory
        if not directory.is_absolute():
            directory = state.workspace / directory
        directory.mkdir(parents=True, exist_ok=True)

        path = directory / self.config.filename
        path.write_text(self.render(state), encoding="utf-8")
        state.report_path = path

        image = state.require_image()
        self.console.print(
            Panel(
                f"[bold]Image:[/bold] {image.versioned}\n"
                f"[bold]Latest:[/bold] {image.latest}\n"
                f"[bold]Pushed:[/bold] {'yes' if state.digests else 'no'}\n"
                f"[bold]Report:[/bold] {path}",
                title="Deployment Summary",
                border_style="green",
            )
        )
        self.logger.info("report_written", path=str(path), image=image.versioned)
        return path
