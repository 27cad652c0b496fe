from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

from .errors import PersistenceError
from .models import AnomalyEvent, PerSecondBucket

logger = logging.getLogger(__name__)

PathLike = Union[str, os.PathLike]

ANOMALY_SUFFIX = "-anomalies.json"


@dataclass
class SessionRecord:
    """
    A session file found on disk.
    """

    path: Path
    session_start: float
    session_end: float


@dataclass
class SessionDocument:
    """
    Parsed contents of a persisted session.

    buckets are rebuilt from the perSecond array and come back finalized.
    Only the persisted fields are restored, fan-in/out and rows are not saved.
    """

    path: Path
    session_start: float
    session_end: float
    buckets: List[PerSecondBucket] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return build_session_document(self.session_start, self.session_end, self.buckets)


def to_iso(ts: float) -> str:
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


def from_iso(text: str) -> float:
    # fromisoformat only accepts a trailing Z from Python 3.11 on
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    dt = datetime.fromisoformat(text)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.timestamp()


def session_file_name(session_start: float, session_end: float) -> str:
    """
    <start>-<end>.json with ':' replaced so the name is valid everywhere.
    """
    name = f"{to_iso(session_start)}-{to_iso(session_end)}"
    return name.replace(":", "-") + ".json"


def anomaly_file_name(session_start: float) -> str:
    return to_iso(session_start).replace(":", "-") + ANOMALY_SUFFIX


def build_session_document(
    session_start: float,
    session_end: float,
    buckets: Iterable[PerSecondBucket],
) -> Dict[str, Any]:
    ordered = sorted(buckets, key=lambda b: b.second)
    return {
        "sessionStart": to_iso(session_start),
        "sessionEnd": to_iso(session_end),
        "perSecond": [b.to_dict() for b in ordered],
    }


def _write_json_atomic(path: Path, doc: Dict[str, Any]) -> None:
    """
    Write doc next to path first and move it into place only once it is
    fully on disk. A failed write never leaves a partial file behind.
    """
    tmp = path.with_name(path.name + ".tmp")
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(doc, f, indent=2)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, path)
    except (OSError, TypeError, ValueError) as exc:
        try:
            tmp.unlink()
        except FileNotFoundError:
            pass
        except OSError:
            logger.warning("Could not remove partial file %s", tmp)
        raise PersistenceError(f"failed to write {path}: {exc}") from exc


def write_session(
    directory: PathLike,
    session_start: float,
    session_end: float,
    buckets: Iterable[PerSecondBucket],
    previous_path: Optional[PathLike] = None,
) -> Path:
    """
    Persist a session and return the path of the new file.

    The previous file of the same session is removed only after the new one
    is in place. On failure PersistenceError is raised and the previous file
    stays where it was.
    """
    path = Path(directory) / session_file_name(session_start, session_end)
    doc = build_session_document(session_start, session_end, buckets)

    _write_json_atomic(path, doc)

    if previous_path is not None and Path(previous_path) != path:
        try:
            Path(previous_path).unlink()
        except FileNotFoundError:
            pass
        except OSError as exc:
            logger.warning("Could not remove superseded session file %s: %s", previous_path, exc)

    logger.info("Saved session statistics to %s", path)
    return path


def load_session(path: PathLike) -> SessionDocument:
    p = Path(path)
    try:
        with open(p, "r", encoding="utf-8") as f:
            raw = json.load(f)

        buckets: List[PerSecondBucket] = []
        for item in raw.get("perSecond", []):
            bucket = PerSecondBucket(second=int(item["second"]))
            bucket.protocol_counts = {str(k): int(v) for k, v in item.get("protocolCounts", {}).items()}
            bucket.connections = {(str(c["src"]), str(c["dst"])): None for c in item.get("connections", [])}
            bucket.packets = int(item.get("pps", 0))
            bucket.bytes = int(item.get("bps", 0))
            bucket.finalized = True
            buckets.append(bucket)

        return SessionDocument(
            path=p,
            session_start=from_iso(raw["sessionStart"]),
            session_end=from_iso(raw["sessionEnd"]),
            buckets=sorted(buckets, key=lambda b: b.second),
        )
    except (OSError, KeyError, TypeError, ValueError, AttributeError) as exc:
        raise PersistenceError(f"failed to load session {p}: {exc}") from exc


def list_sessions(directory: PathLike) -> List[SessionRecord]:
    """
    Return the sessions stored in directory, oldest first.

    Anomaly exports and unreadable files are skipped.
    """
    d = Path(directory)
    if not d.is_dir():
        return []

    records: List[SessionRecord] = []
    for p in sorted(d.glob("*.json")):
        if p.name.endswith(ANOMALY_SUFFIX):
            continue
        try:
            with open(p, "r", encoding="utf-8") as f:
                raw = json.load(f)
            records.append(
                SessionRecord(
                    path=p,
                    session_start=from_iso(raw["sessionStart"]),
                    session_end=from_iso(raw["sessionEnd"]),
                )
            )
        except (OSError, KeyError, TypeError, ValueError, AttributeError) as exc:
            logger.warning("Skipping unreadable session file %s: %s", p, exc)

    records.sort(key=lambda r: r.session_start)
    return records


def export_anomalies(
    directory: PathLike,
    session_start: float,
    events: Iterable[AnomalyEvent],
) -> Path:
    path = Path(directory) / anomaly_file_name(session_start)
    doc = {
        "sessionStart": to_iso(session_start),
        "anomalies": [e.to_dict() for e in events],
    }
    _write_json_atomic(path, doc)
    logger.info("Exported anomalies to %s", path)
    return path
