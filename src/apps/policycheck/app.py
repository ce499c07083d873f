"""Root Typer application for the policycheck CLI."""

from __future__ import annotations

import os
from importlib import import_module
from pathlib import Path
from typing import Any, Optional

import typer

from apps.policycheck.compare import compare
from apps.policycheck.config import PROFILE_ENV
from apps.policycheck.rules import app as rules
from libraries.reconcile.rules import RULES_PATH_ENV

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8000

app = typer.Typer(
    name="policycheck",
    help="Reconcile Salesforce policy exports against incoming submissions.",
)

app.command("compare")(compare)
app.add_typer(rules)


def _load_uvicorn() -> Any:
    """Dynamically import uvicorn to keep it optional for non-web commands."""

    return import_module("uvicorn")


@app.command("serve")
def serve(
    host: str = typer.Option(
        DEFAULT_HOST,
        "--host",
        "-h",
        help="Host interface to bind the upload service to.",
        show_default=True,
    ),
    port: int = typer.Option(
        DEFAULT_PORT,
        "--port",
        "-p",
        min=1,
        max=65535,
        help="Port to expose the upload service on.",
        show_default=True,
    ),
    rules_path: Optional[Path] = typer.Option(
        None, "--rules", help="Rule store JSON file to use."
    ),
    profile: Optional[str] = typer.Option(
        None, "--profile", help="Configuration profile name."
    ),
    log_level: str = typer.Option(
        "info", "--log-level", help="Log level passed to uvicorn.", show_default=True
    ),
) -> None:
    """Run the upload and report web service."""

    if rules_path is not None:
        os.environ[RULES_PATH_ENV] = str(rules_path)
    if profile is not None:
        os.environ[PROFILE_ENV] = profile

    uvicorn = _load_uvicorn()
    uvicorn.run(
        "apps.policycheck.web:app",
        host=host,
        port=port,
        reload=False,
        log_level=log_level,
    )


__all__ = ["app"]
