"""
Session transcript recording for the Server Query client.

A bot may stay connected for days, so transcripts are written as JSON Lines:
one header record, then one record per command, server line or lifecycle
event, each flushed as soon as it is recorded, and a closing summary record.
Only the most recent records are kept in memory.
"""

import json
import logging
import threading
import time
from collections import Counter, deque
from datetime import datetime
from pathlib import Path
from typing import Any, Deque, Dict, Iterator, List, Optional

from .protocol import Commands, ServerResponse, mask_command

PROTOCOL_NAME = "TeamSpeak 3 Server Query"
TRANSCRIPT_SUFFIX = ".jsonl"
DEFAULT_KEEP_RECENT = 200

logger = logging.getLogger(__name__)


class SessionRecorder:
    """
    Streams all client-server interactions of a session to disk.

    The transcript file is created on the first record. A failure to write it
    is logged once and recording continues in memory only, so a full disk
    never takes the session down.
    """

    def __init__(self, session_id: Optional[str] = None, output_dir: str = "sessions",
                 keep_recent: int = DEFAULT_KEEP_RECENT):
        self.session_id = session_id or self._generate_session_id()
        self.output_dir = Path(output_dir)
        self.start_time = time.time()
        self.recent: Deque[Dict[str, Any]] = deque(maxlen=keep_recent)
        self.counts: Counter = Counter()
        self.command_counts: Counter = Counter()
        self.closed = False
        self._file = None
        self._write_failed = False
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self.output_dir / f"{self.session_id}{TRANSCRIPT_SUFFIX}"

    def _generate_session_id(self) -> str:
        return f"session_{datetime.now().strftime('%Y%m%d_%H%M%S')}"

    def _stamp(self) -> Dict[str, Any]:
        now = time.time()
        return {"timestamp": now, "relative_time": now - self.start_time}

    def _write_line(self, record: Dict[str, Any]) -> None:
        if self._write_failed:
            return
        try:
            if self._file is None:
                self.output_dir.mkdir(parents=True, exist_ok=True)
                self._file = open(self.path, 'a', encoding='utf-8')
                self._file.write(json.dumps(self._header(), ensure_ascii=False) + "\n")
            self._file.write(json.dumps(record, ensure_ascii=False) + "\n")
            self._file.flush()
        except OSError as e:
            self._write_failed = True
            logger.error(f"Transcript {self.path} disabled, cannot write: {e}")

    def _header(self) -> Dict[str, Any]:
        return {
            "type": "session",
            "session_id": self.session_id,
            "start_time": self.start_time,
            "protocol": PROTOCOL_NAME,
            "recorded_at": datetime.fromtimestamp(self.start_time).isoformat(),
        }

    def _append(self, record: Dict[str, Any]) -> None:
        with self._lock:
            if self.closed:
                raise RuntimeError(f"transcript {self.session_id} is already closed")
            self.recent.append(record)
            self.counts[record["type"]] += 1
            self._write_line(record)

    def record_request(self, command: str, description: str = "") -> None:
        """
        Record a command sent to the server.

        Args:
            command: The command line being sent, without terminator
            description: Optional description of the request
        """
        line = mask_command(command.rstrip("\n"))
        name = line.split(" ", 1)[0]
        record = self._stamp()
        record.update({
            "type": "request",
            "command": name,
            "line": line,
            "description": description,
        })
        self.command_counts[name] += 1
        self._append(record)

    def record_response(self, line: str, response: Optional[ServerResponse] = None,
                        description: str = "") -> None:
        """
        Record a line received from the server.

        Lines carrying an unsolicited event are recorded as notifications,
        everything else as responses. Acknowledgments also carry their error
        id and unescaped message.
        """
        action = response.action if response else ""
        record = self._stamp()
        record.update({
            "type": "notification" if action.startswith("notify") else "response",
            "command": action,
            "line": line,
            "description": description,
        })
        if response and action == Commands.ACKNOWLEDGE:
            record["error_id"] = response.get("id")
            record["message"] = response.message
        self._append(record)

    def record_event(self, event_type: str, description: str, details: Dict[str, Any] = None) -> None:
        """Record a lifecycle event (connection, state change, error, ...)."""
        record = self._stamp()
        record.update({
            "type": "event",
            "event_type": event_type,
            "description": description,
            "details": details or {},
        })
        self._append(record)

    def get_session_summary(self) -> Dict[str, Any]:
        """Counters for everything recorded so far, including flushed records."""
        return {
            "session_id": self.session_id,
            "duration": time.time() - self.start_time,
            "total_interactions": sum(self.counts.values()),
            "requests": self.counts["request"],
            "responses": self.counts["response"],
            "notifications": self.counts["notification"],
            "events": self.counts["event"],
            "commands_sent": dict(self.command_counts),
        }

    def close(self) -> Optional[str]:
        """
        Write the summary record and close the transcript file.

        Returns:
            The transcript path, or None if nothing reached the disk.
        """
        with self._lock:
            if self.closed:
                return str(self.path) if self._file else None
            self.closed = True
            summary = self.get_session_summary()
            summary["type"] = "summary"
            summary["end_time"] = time.time()
            self._write_line(summary)
            if self._file is None:
                return None
            self._file.close()
            return None if self._write_failed else str(self.path)


class Transcript:
    """A transcript read back from disk."""

    def __init__(self, path: str, header: Dict[str, Any], records: List[Dict[str, Any]],
                 summary: Optional[Dict[str, Any]] = None, skipped: int = 0):
        self.path = path
        self.header = header
        self.records = records
        self.summary = summary
        self.skipped = skipped

    @property
    def session_id(self) -> str:
        return self.header.get("session_id") or Path(self.path).stem

    @property
    def complete(self) -> bool:
        """Whether the session was closed cleanly (a summary was written)."""
        return self.summary is not None

    @property
    def duration(self) -> float:
        if self.summary:
            return self.summary.get("duration", 0.0)
        if self.records:
            return self.records[-1].get("relative_time", 0.0)
        return 0.0


def iter_records(path: str) -> Iterator[Optional[Dict[str, Any]]]:
    """
    Yield the records of a transcript file one at a time.

    A line that is not a JSON object yields None; the last line of a
    transcript whose bot was killed is usually cut short.

    Raises:
        FileNotFoundError: If the transcript doesn't exist
    """
    with open(path, 'r', encoding='utf-8') as f:
        for line in f:
            if not line.strip():
                continue
            try:
                record = json.loads(line)
            except json.JSONDecodeError:
                yield None
                continue
            yield record if isinstance(record, dict) else None


def load_transcript(path: str, tail: Optional[int] = None) -> Transcript:
    """
    Read a transcript, keeping only the last ``tail`` records when given.

    Raises:
        FileNotFoundError: If the transcript doesn't exist
    """
    header: Dict[str, Any] = {}
    summary = None
    skipped = 0
    records: Deque[Dict[str, Any]] = deque(maxlen=tail)
    for record in iter_records(path):
        if record is None:
            skipped += 1
        elif record.get("type") == "session" and not header:
            header = record
        elif record.get("type") == "summary":
            summary = record
        else:
            records.append(record)
    if skipped:
        logger.warning(f"Skipped {skipped} unreadable line(s) in {path}")
    return Transcript(path, header, list(records), summary, skipped)


def list_transcripts(sessions_dir: str = "sessions") -> List[Dict[str, Any]]:
    """
    Describe every transcript in a directory, newest first.

    Only the header line of each file is parsed; files without one are
    skipped.
    """
    sessions_path = Path(sessions_dir)
    if not sessions_path.is_dir():
        return []

    found = []
    for transcript_file in sessions_path.glob(f"*{TRANSCRIPT_SUFFIX}"):
        records = iter_records(str(transcript_file))
        header = next(records, None)
        records.close()
        if not header or header.get("type") != "session":
            logger.debug(f"Skipping {transcript_file}: no session header")
            continue
        stat = transcript_file.stat()
        found.append({
            "filename": transcript_file.name,
            "filepath": str(transcript_file),
            "session_id": header.get("session_id"),
            "start_time": header.get("start_time") or 0,
            "recorded_at": header.get("recorded_at"),
            "size": stat.st_size,
            "last_write": stat.st_mtime,
        })

    found.sort(key=lambda x: x["start_time"], reverse=True)
    return found
