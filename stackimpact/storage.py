"""
Local spool for delivered agent messages: run metadata (run.json) and append-only messages (messages.jsonl).

<data_dir>/runs/<run_id>/ with run.json and messages.jsonl.
Uses config.data_dir (default ~/.stackimpact). Stdlib only.
"""
import json
import os
import re
import tempfile
from datetime import datetime, timezone
from pathlib import Path

from stackimpact.config import AgentConfig
from stackimpact.version import version as agent_version

RUN_JSON = "run.json"
MESSAGES_JSONL = "messages.jsonl"

# run_id is a 40-char lowercase hex SHA-1 (see stackimpact.ids).
_RUN_ID_RE = re.compile(r"^[0-9a-f]{40}$")


def utc_now_iso_ms_z() -> str:
    """Return current UTC time as ISO8601 with milliseconds and trailing Z."""
    now = datetime.now(timezone.utc)
    return now.strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z"


def validate_run_id_format(run_id: str) -> str:
    """
    Validate that run_id is a 40-char lowercase hex string (no path segments, no traversal).
    Returns run_id unchanged. Raises ValueError("invalid run_id") otherwise.
    """
    if not run_id or not isinstance(run_id, str):
        raise ValueError("invalid run_id")
    if not _RUN_ID_RE.match(run_id):
        raise ValueError("invalid run_id")
    return run_id


def _runs_dir(config: AgentConfig) -> Path:
    """Return the runs base directory: <data_dir>/runs."""
    return Path(config.data_dir).expanduser() / "runs"


def _run_dir(run_id: str, config: AgentConfig) -> Path:
    validate_run_id_format(run_id)
    return _runs_dir(config) / run_id


def _run_json_path(run_id: str, config: AgentConfig) -> Path:
    return _run_dir(run_id, config) / RUN_JSON


def _messages_path(run_id: str, config: AgentConfig) -> Path:
    return _run_dir(run_id, config) / MESSAGES_JSONL


def create_run(run_id: str, run_ts: int, config: AgentConfig) -> dict:
    """
    Create the spool directory for run_id and write run.json.

    Idempotent: an existing run.json is left untouched and returned.
    The agent key is never written to disk.
    """
    base = _run_dir(run_id, config)
    base.mkdir(parents=True, exist_ok=True)
    path = base / RUN_JSON
    if path.is_file():
        return load_run_meta(run_id, config)

    meta = {
        "run_id": run_id,
        "run_ts": run_ts,
        "started_at": utc_now_iso_ms_z(),
        "agent_version": agent_version,
        "app_name": config.app_name,
        "app_version": config.app_version,
        "app_environment": config.app_environment,
        "host_name": config.host_name,
        "dashboard_address": config.dashboard_address,
    }
    _atomic_write_json(path, meta)
    return meta


def append_message(run_id: str, message: dict, config: AgentConfig) -> None:
    """Append one message as a single JSON line to messages.jsonl and flush. Call create_run first."""
    path = _messages_path(run_id, config)
    if not path.parent.is_dir():
        raise FileNotFoundError(f"run directory not found for run_id={run_id}")
    with open(path, "a", encoding="utf-8") as f:
        f.write(json.dumps(message, ensure_ascii=False, default=str) + "\n")
        f.flush()
        os.fsync(f.fileno())


def _atomic_write_json(path: Path, data: dict) -> None:
    """Write JSON to path atomically (temp file then rename)."""
    fd, tmp = tempfile.mkstemp(
        dir=path.parent,
        prefix=path.name + ".",
        suffix=".tmp",
    )
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, ensure_ascii=False, indent=2)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, path)
    except Exception:
        try:
            os.unlink(tmp)
        except OSError:
            pass
        raise


def load_run_meta(run_id: str, config: AgentConfig) -> dict:
    """Load run metadata from run.json. Raises FileNotFoundError if run or run.json missing."""
    path = _run_json_path(run_id, config)
    if not path.is_file():
        raise FileNotFoundError(f"No run found for run_id '{run_id}'")
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def load_messages(run_id: str, config: AgentConfig) -> list[dict]:
    """
    Read messages.jsonl for the run and return a list of message dicts.

    Returns [] if the file is missing or empty. Corrupt lines are skipped.
    """
    path = _messages_path(run_id, config)
    if not path.is_file():
        return []
    messages: list[dict] = []
    with open(path, "r", encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if not line:
                continue
            try:
                messages.append(json.loads(line))
            except json.JSONDecodeError:
                continue
    return messages


def _parse_iso8601_utc(s: str) -> datetime | None:
    """Parse ISO8601 UTC timestamp (e.g. 2026-02-15T20:31:05.123Z). Returns None if invalid."""
    if not s or not isinstance(s, str):
        return None
    try:
        return datetime.fromisoformat(s.strip().replace("Z", "+00:00"))
    except (ValueError, TypeError):
        return None


def _iter_run_metas(config: AgentConfig) -> list[tuple[datetime | None, dict]]:
    runs_base = _runs_dir(config)
    if not runs_base.is_dir():
        return []
    candidates: list[tuple[datetime | None, dict]] = []
    for entry in runs_base.iterdir():
        if not entry.is_dir() or not _RUN_ID_RE.match(entry.name):
            continue
        run_json = entry / RUN_JSON
        if not run_json.is_file():
            continue
        try:
            with open(run_json, "r", encoding="utf-8") as f:
                meta = json.load(f)
        except (json.JSONDecodeError, OSError):
            continue
        candidates.append((_parse_iso8601_utc(meta.get("started_at")), meta))

    # Runs with missing/invalid started_at sort last.
    def sort_key(item: tuple[datetime | None, dict]) -> tuple[bool, datetime]:
        dt, _ = item
        return (dt is not None, dt or datetime.min.replace(tzinfo=timezone.utc))

    candidates.sort(key=sort_key, reverse=True)
    return candidates


def list_runs(limit: int, config: AgentConfig) -> list[dict]:
    """List most recent spooled runs by started_at descending (run.json only), up to limit."""
    return [meta for _, meta in _iter_run_metas(config)[:limit]]


def resolve_run_id(prefix: str, config: AgentConfig) -> str:
    """
    Resolve a run_id prefix to the full run_id.
    If several runs match, returns the most recent by started_at.
    Raises FileNotFoundError if no run matches or prefix is not hex.
    """
    prefix = (prefix or "").strip()
    if not prefix or not re.fullmatch(r"[0-9a-f]+", prefix):
        raise FileNotFoundError("Run ID is required")
    for _, meta in _iter_run_metas(config):
        rid = meta.get("run_id") or ""
        if rid.startswith(prefix):
            return rid
    raise FileNotFoundError(f"No run found matching '{prefix}'")
