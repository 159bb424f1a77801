# gemflows/cli.py
"""Command-line interface
------------------------
Commands to list/validate/run recipes and view effective config.
Thin wrapper around the loader, the recipe fetcher and the engine.
"""

from __future__ import annotations

import json
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

import click

from gemflows import __version__
from gemflows.core.engine import engine_session
from gemflows.core.workflow_loader import (
    Workflow,
    list_keys,
    load_from_workflows_dir,
    load_workflows_file,
    parse_workflow,
)
from gemflows.exceptions import GemflowsError, RecipeFetchError, StepFailedError
from gemflows.fetcher import RecipeFetcher
from gemflows.utils.config import get_settings
from gemflows.utils.logger import (
    attach_file_logger,
    bind,
    detach_file_logger,
    get_logger,
    set_log_level,
    unbind,
)


# -------- helpers --------


def _echo_json(obj) -> None:
    click.echo(json.dumps(obj, indent=2, ensure_ascii=False))


def _find_yaml_files(root: Path, recursive: bool = True) -> list[Path]:
    if recursive:
        return sorted(list(root.rglob("*.yaml")) + list(root.rglob("*.yml")))
    return sorted(list(root.glob("*.yaml")) + list(root.glob("*.yml")))


def _resolve_recipe(recipe: str, workflows_dir: Path, base_url: Optional[str]) -> Workflow:
    """Local file, then a key in the workflows directory, then the remote catalog."""
    log = get_logger(__name__)
    p = Path(recipe)
    if not p.is_file() and recipe in list_keys(workflows_dir):
        log.debug(f"Loading recipe {recipe!r} from {workflows_dir}")
        return load_from_workflows_dir(workflows_dir, recipe)

    with RecipeFetcher(base_url=base_url) as fetcher:
        res = fetcher.get_recipe_data(recipe)
    log.debug(f"Loaded recipe {res.recipe_name!r} ({res.source.value})")
    return parse_workflow(res.data, origin=res.url or res.recipe_name)


# -------- CLI root --------


@click.group(context_settings=dict(help_option_names=["-h", "--help"]))
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"], case_sensitive=False),
    default=None,
    help="Override LOG_LEVEL from settings",
)
@click.version_option(__version__, message="Pals GemFlows %(version)s")
def cli(log_level: Optional[str]):
    # Initialize settings + logger once at process start
    _ = get_settings()
    if log_level:
        set_log_level(log_level.upper())


# -------- commands --------


@cli.command("config")
def cmd_config():
    """Print effective configuration (after .env & env vars), secrets masked."""
    _echo_json(get_settings().public_dict())


@cli.command("list")
@click.option(
    "--dir", "workflows_dir",
    type=click.Path(file_okay=False, dir_okay=True),
    default=lambda: str(get_settings().WORKFLOWS_DIR),
    show_default="WORKFLOWS_DIR",
    help="Directory containing recipe YAML files",
)
@click.option("--remote/--no-remote", default=False, show_default=True, help="Also list the remote catalog")
@click.option("--ref", default="main", show_default=True, help="Git ref of the remote catalog")
def cmd_list(workflows_dir: str, remote: bool, ref: str):
    """List available recipes."""
    local = list_keys(Path(workflows_dir))
    if local:
        click.echo(f"Local recipes ({workflows_dir}):")
        for key in local:
            click.echo(f" - {key}")
    else:
        click.echo("No local recipes found.")

    if not remote:
        return

    try:
        with RecipeFetcher() as fetcher:
            keys = fetcher.list_remote_keys(ref=ref)
    except RecipeFetchError as e:
        click.echo(f"ERR remote catalog -> {e}")
        sys.exit(1)
    click.echo(f"Remote recipes ({len(keys)}):")
    for key in keys:
        click.echo(f" - {key}")


@cli.command("validate")
@click.argument("targets", nargs=-1, required=False)
@click.option("--dir", "workflows_dir", type=click.Path(file_okay=False, dir_okay=True, exists=True), help="Validate all recipes under this directory")
@click.option("--recursive/--no-recursive", default=True, show_default=True)
def cmd_validate(targets: List[str], workflows_dir: Optional[str], recursive: bool):
    """Validate recipes from files or a directory (supports multi-doc YAML)."""
    paths: list[Path] = []
    if targets:
        for p in (Path(t).resolve() for t in targets):
            if p.is_dir():
                paths.extend(_find_yaml_files(p, recursive=True))
            else:
                paths.append(p)
    elif workflows_dir:
        paths.extend(_find_yaml_files(Path(workflows_dir), recursive=recursive))
    else:
        click.echo("Provide file(s) or --dir to validate.")
        sys.exit(2)

    ok = True
    for fp in paths:
        try:
            for wf in load_workflows_file(fp):
                click.echo(f"OK  {fp}  ->  {wf.name} ({len(wf.steps)} steps)")
        except (GemflowsError, FileNotFoundError) as e:
            ok = False
            click.echo(f"ERR {fp}  ->  {e}")

    sys.exit(0 if ok else 1)


@cli.command("run")
@click.argument("recipe")
@click.option("--recipes-base-url", default=None, help="Override the remote recipe catalog URL")
@click.option(
    "--workflows-dir",
    type=click.Path(file_okay=False, dir_okay=True),
    default=None,
    help="Directory searched for recipe keys before the remote catalog",
)
@click.option("--json-out", type=click.Path(dir_okay=False), default=None, help="Write the step outputs as JSON to this file")
@click.option("--log-file", type=click.Path(dir_okay=False), default=None, help="Also write JSON logs for this run to a file")
def cmd_run(
    recipe: str,
    recipes_base_url: Optional[str],
    workflows_dir: Optional[str],
    json_out: Optional[str],
    log_file: Optional[str],
):
    """
    Run a recipe by local path or catalog name.

    Examples:
      gemflows run workflows/blog_post.yaml
      gemflows run marketing/blog_post
    """
    settings = get_settings()
    log = get_logger(__name__)
    wf_dir = Path(workflows_dir) if workflows_dir else settings.WORKFLOWS_DIR

    try:
        wf = _resolve_recipe(recipe, wf_dir, recipes_base_url)
    except (GemflowsError, FileNotFoundError) as e:
        click.echo(f"ERR {recipe} -> {e}")
        sys.exit(1)

    handler = attach_file_logger(log_file) if log_file else None
    bind(run_id=datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ"), recipe=wf.name)

    exit_code = 0
    try:
        with engine_session(settings) as engine:
            outputs = engine.run(wf)
        click.echo(f"Done. {wf.name}: {len(outputs)} step(s) completed")
        if json_out:
            outp = Path(json_out).resolve()
            outp.parent.mkdir(parents=True, exist_ok=True)
            outp.write_text(json.dumps({"workflow": wf.name, "outputs": outputs}, indent=2), encoding="utf-8")
            click.echo(f"Wrote outputs: {outp}")
    except StepFailedError as e:
        log.debug(f"Workflow {wf.name} failed", exc_info=True)
        click.echo(f"ERR {e.step_id}: {e.cause}")
        exit_code = 1
    except GemflowsError as e:
        click.echo(f"ERR {wf.name}: {e}")
        exit_code = 1
    finally:
        unbind("run_id", "recipe")
        if handler is not None:
            detach_file_logger(handler)

    sys.exit(exit_code)


def main() -> None:
    cli(prog_name="gemflows")


if __name__ == "__main__":
    main()
