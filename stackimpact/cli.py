"""
Typer CLI for the StackImpact agent.

Commands: config, list, export, run. Entrypoint: main() for console script stackimpact.cli:main.
"""
import json
import runpy
import sys
import traceback
from pathlib import Path

import typer
from typer import Exit

import stackimpact.storage as storage
from stackimpact.agent import Agent
from stackimpact.config import load_config, redacted_config

EXIT_ERROR = 1
EXIT_NOT_FOUND = 2
EXIT_INTERNAL = 10

app = typer.Typer(help="StackImpact agent CLI: inspect config, list or export spooled runs, run a script.")


def _run_table_rows(runs: list[dict]) -> list[list[str]]:
    """Build rows for text table: run_id (short), app_name, app_version, host_name, started_at."""
    rows = []
    for r in runs:
        rows.append([
            (r.get("run_id") or "")[:8],
            r.get("app_name") or "",
            r.get("app_version") or "",
            r.get("host_name") or "",
            r.get("started_at") or "",
        ])
    return rows


def _format_text_table(rows: list[list[str]], headers: list[str]) -> str:
    """Format rows as a simple text table."""
    col_widths = [len(h) for h in headers]
    for row in rows:
        for i, cell in enumerate(row):
            col_widths[i] = max(col_widths[i], len(cell))
    lines = ["\t".join(h.ljust(col_widths[i]) for i, h in enumerate(headers))]
    for row in rows:
        lines.append("\t".join(cell.ljust(col_widths[i]) for i, cell in enumerate(row)))
    return "\n".join(lines)


@app.command("config")
def config_cmd(
    json_out: bool = typer.Option(False, "--json", help="Output machine-readable JSON"),
) -> None:
    """Show the configuration resolved from STACKIMPACT_* environment variables."""
    try:
        data = redacted_config(load_config())
    except Exception as e:
        typer.echo(f"error: {e}", err=True)
        raise Exit(EXIT_INTERNAL)
    if json_out:
        print(json.dumps(data, ensure_ascii=False))
        return
    width = max(len(k) for k in data)
    for key, value in data.items():
        print(f"{key.ljust(width)}  {value}")


@app.command("list")
def list_cmd(
    limit: int = typer.Option(20, "--limit", "-n", help="Max runs to list"),
    json_out: bool = typer.Option(False, "--json", help="Output machine-readable JSON"),
) -> None:
    """List recent spooled runs."""
    try:
        config = load_config()
        runs = storage.list_runs(limit=limit, config=config)
        if json_out:
            print(json.dumps({"runs": runs}, ensure_ascii=False))
        else:
            headers = ["run_id", "app_name", "app_version", "host_name", "started_at"]
            print(_format_text_table(_run_table_rows(runs), headers))
    except Exception as e:
        if not json_out:
            typer.echo(f"error: {e}", err=True)
        raise Exit(EXIT_INTERNAL)


@app.command("export")
def export_cmd(
    run_id: str = typer.Argument(..., help="Run ID or prefix to export"),
    out: Path = typer.Option(..., "--out", "-o", path_type=Path, help="Output JSON file path"),
) -> None:
    """Export a spooled run to a single JSON file (run metadata + messages array)."""
    try:
        config = load_config()
        try:
            run_id = storage.resolve_run_id(run_id, config)
            run_meta = storage.load_run_meta(run_id, config)
        except (ValueError, FileNotFoundError):
            raise Exit(EXIT_NOT_FOUND)
        messages = storage.load_messages(run_id, config)
        out.parent.mkdir(parents=True, exist_ok=True)
        with open(out, "w", encoding="utf-8") as f:
            json.dump({"run": run_meta, "messages": messages}, f, ensure_ascii=False, indent=2)
    except Exit:
        raise
    except Exception as e:
        typer.echo(f"error: {e}", err=True)
        raise Exit(EXIT_INTERNAL)


@app.command(
    "run",
    context_settings={"allow_extra_args": True, "ignore_unknown_options": True},
)
def run_cmd(
    ctx: typer.Context,
    script: Path = typer.Argument(..., help="Python script to run under the agent"),
) -> None:
    """Start an agent configured from the environment, then run SCRIPT as __main__."""
    if not script.is_file():
        typer.echo(f"Script not found: {script}", err=True)
        raise Exit(EXIT_NOT_FOUND)

    agent = Agent.from_env()
    agent.start()

    saved_argv = sys.argv
    saved_path = list(sys.path)
    sys.argv = [str(script), *ctx.args]
    # Sibling imports resolve as they do under `python script.py`.
    sys.path.insert(0, str(script.resolve().parent))
    try:
        runpy.run_path(str(script), run_name="__main__")
    except Exception as e:
        agent.record_error("uncaught", e)
        traceback.print_exc()
        raise Exit(EXIT_ERROR)
    finally:
        sys.argv = saved_argv
        sys.path[:] = saved_path
        agent.flush()


def main() -> None:
    """CLI entrypoint (console script stackimpact.cli:main)."""
    app()


if __name__ == "__main__":
    main()
