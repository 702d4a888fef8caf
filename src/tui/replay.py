#!/usr/bin/env python3
"""
Viewer for recorded Server Query transcripts.

Transcripts are re-read through the wire codec: every command is paired with
the acknowledgment that answered it, ``notifytextmessage`` events are decoded
back into chat messages (unescaped text and invoker) together with the reply
the bot sent, and rejected commands, undecodable events and recorded errors
are collected in one place.
"""

import argparse
import sys
from datetime import datetime
from typing import Any, Dict, List, Optional

from rich import box
from rich.console import Console, Group
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from ..tsquery.exceptions import InvalidResponseError
from ..tsquery.protocol import Commands, Message, ServerResponse
from ..tsquery.session import Transcript, list_transcripts, load_transcript

SECTIONS = ("commands", "chat", "problems")


class Exchange:
    """A command sent by the bot and the acknowledgment that answered it."""

    def __init__(self, request: Dict[str, Any]):
        self.request = request
        self.ack: Optional[Dict[str, Any]] = None

    @property
    def command(self) -> str:
        return self.request.get("command", "")

    @property
    def answered(self) -> bool:
        return self.ack is not None

    @property
    def ok(self) -> bool:
        return self.answered and self.ack.get("message") == Commands.OK

    @property
    def error_id(self) -> Optional[str]:
        return self.ack.get("error_id") if self.ack else None

    @property
    def latency(self) -> Optional[float]:
        if not self.ack:
            return None
        return self.ack["relative_time"] - self.request["relative_time"]

    @property
    def result(self) -> str:
        if not self.answered:
            return "no reply"
        if self.ok:
            return "ok"
        return f"error {self.error_id}: {self.ack.get('message') or '(no message)'}"


class Chat:
    """A decoded private chat message and the reply sent for it, if any."""

    def __init__(self, record: Dict[str, Any], message: Message):
        self.record = record
        self.message = message
        self.reply: Optional[Exchange] = None

    @property
    def reply_text(self) -> str:
        if not self.reply:
            return ""
        return ServerResponse.decode(self.reply.request["line"]).message


class Problem:
    """Something in the transcript that went wrong."""

    def __init__(self, record: Dict[str, Any], kind: str, detail: str):
        self.record = record
        self.kind = kind
        self.detail = detail


class TranscriptAnalysis:
    """
    Rebuilds the conversation from the flat record stream.

    Commands are strictly sequential on a Server Query connection, so an
    acknowledgment always belongs to the oldest unanswered command.
    Notifications may arrive between a command and its acknowledgment.
    """

    def __init__(self, transcript: Transcript):
        self.transcript = transcript
        self.exchanges: List[Exchange] = []
        self.chats: List[Chat] = []
        self.problems: List[Problem] = []
        self.stray_acks = 0
        self._analyse(transcript.records)

    def _analyse(self, records: List[Dict[str, Any]]) -> None:
        pending: List[Exchange] = []
        awaiting_reply: Dict[int, Chat] = {}

        for record in records:
            kind = record.get("type")
            if kind == "request":
                exchange = Exchange(record)
                self.exchanges.append(exchange)
                pending.append(exchange)
                if exchange.command == "sendtextmessage":
                    self._attach_reply(exchange, awaiting_reply)
            elif kind == "response" and record.get("command") == Commands.ACKNOWLEDGE:
                if not pending:
                    # acks recorded before the transcript tail starts
                    self.stray_acks += 1
                    continue
                exchange = pending.pop(0)
                exchange.ack = record
                if not exchange.ok:
                    self.problems.append(Problem(record, "rejected", f"{exchange.command}: {exchange.result}"))
            elif kind == "notification" and record.get("command") == Commands.TEXT_MESSAGE:
                chat = self._decode_chat(record)
                if chat:
                    self.chats.append(chat)
                    awaiting_reply[chat.message.invoker_id] = chat
            elif kind == "event" and record.get("event_type") == "error":
                self.problems.append(Problem(record, "error", record.get("description", "")))

    def _decode_chat(self, record: Dict[str, Any]) -> Optional[Chat]:
        try:
            message = Message.from_response(ServerResponse.decode(record.get("line", "")))
        except InvalidResponseError as e:
            self.problems.append(Problem(record, "undecodable", str(e)))
            return None
        return Chat(record, message)

    @staticmethod
    def _attach_reply(exchange: Exchange, awaiting_reply: Dict[int, Chat]) -> None:
        target = ServerResponse.decode(exchange.request.get("line", "")).get("target")
        if target.isdigit() and int(target) in awaiting_reply:
            awaiting_reply.pop(int(target)).reply = exchange

    @property
    def rejected(self) -> List[Exchange]:
        return [e for e in self.exchanges if e.answered and not e.ok]


def format_offset(seconds: Optional[float]) -> str:
    if seconds is None:
        return "-"
    return f"+{seconds:.3f}s"


def render_header(analysis: TranscriptAnalysis) -> Panel:
    transcript = analysis.transcript
    started = transcript.header.get("start_time")
    started_text = datetime.fromtimestamp(started).strftime("%Y-%m-%d %H:%M:%S") if started else "unknown"

    text = Text()
    text.append(f"{transcript.session_id}\n", style="bold")
    text.append(f"Started {started_text}, lasted {transcript.duration:.2f}s")
    if not transcript.complete:
        text.append("  (no summary: the bot did not close cleanly)", style="yellow")
    text.append(
        f"\n{len(analysis.exchanges)} commands, {len(analysis.rejected)} rejected, "
        f"{len(analysis.chats)} chat messages"
    )
    if transcript.skipped:
        text.append(f", {transcript.skipped} unreadable lines", style="yellow")
    return Panel(text, title=transcript.header.get("protocol", "Server Query"), border_style="blue")


def render_commands(analysis: TranscriptAnalysis) -> Table:
    table = Table(title="Commands", box=box.SIMPLE_HEAD, expand=True)
    table.add_column("At", justify="right", style="dim", no_wrap=True)
    table.add_column("Command", style="cyan", no_wrap=True)
    table.add_column("Line", overflow="fold")
    table.add_column("Result")
    table.add_column("Latency", justify="right", no_wrap=True)

    for exchange in analysis.exchanges:
        style = "green" if exchange.ok else ("yellow" if not exchange.answered else "red")
        latency = exchange.latency
        table.add_row(
            format_offset(exchange.request.get("relative_time")),
            exchange.command,
            exchange.request.get("line", ""),
            Text(exchange.result, style=style),
            f"{latency * 1000:.1f}ms" if latency is not None else "-",
        )
    return table


def render_chat(analysis: TranscriptAnalysis) -> Table:
    table = Table(title="Chat", box=box.SIMPLE_HEAD, expand=True)
    table.add_column("At", justify="right", style="dim", no_wrap=True)
    table.add_column("From", style="magenta")
    table.add_column("Unique id", style="dim", overflow="fold")
    table.add_column("Text", overflow="fold")
    table.add_column("Reply", style="green", overflow="fold")

    for chat in analysis.chats:
        message = chat.message
        table.add_row(
            format_offset(chat.record.get("relative_time")),
            f"{message.invoker_name or '?'} (#{message.invoker_id})",
            message.invoker_uid,
            message.text,
            chat.reply_text,
        )
    return table


def render_problems(analysis: TranscriptAnalysis) -> Table:
    table = Table(title="Problems", box=box.SIMPLE_HEAD, expand=True)
    table.add_column("At", justify="right", style="dim", no_wrap=True)
    table.add_column("Kind", style="red", no_wrap=True)
    table.add_column("Detail", overflow="fold")

    for problem in analysis.problems:
        table.add_row(format_offset(problem.record.get("relative_time")), problem.kind, problem.detail)
    return table


RENDERERS = {
    "commands": render_commands,
    "chat": render_chat,
    "problems": render_problems,
}


def render_transcript(analysis: TranscriptAnalysis, sections=SECTIONS) -> Group:
    parts = [render_header(analysis)]
    for section in sections:
        parts.append(RENDERERS[section](analysis))
    return Group(*parts)


def render_listing(sessions: List[Dict[str, Any]]) -> Table:
    table = Table(title="Recorded Sessions", box=box.SIMPLE_HEAD)
    table.add_column("Session", style="cyan")
    table.add_column("Recorded at", style="green")
    table.add_column("Last write", style="dim")
    table.add_column("Size", justify="right")
    table.add_column("File", style="dim")

    for session in sessions:
        last_write = datetime.fromtimestamp(session["last_write"]).strftime("%Y-%m-%d %H:%M:%S")
        table.add_row(
            session["session_id"] or "?",
            session["recorded_at"] or "unknown",
            last_write,
            f"{session['size'] / 1024:.1f} KiB",
            session["filepath"],
        )
    return table


def show_command(args, console: Console) -> int:
    try:
        transcript = load_transcript(args.transcript, tail=args.tail)
    except OSError as e:
        console.print(f"[red]Cannot read transcript: {e}[/red]")
        return 1

    analysis = TranscriptAnalysis(transcript)
    sections = [args.only] if args.only else SECTIONS
    rendered = render_transcript(analysis, sections)
    if args.pager:
        with console.pager(styles=True):
            console.print(rendered)
    else:
        console.print(rendered)
    return 1 if args.fail_on_rejected and analysis.rejected else 0


def list_command(args, console: Console) -> int:
    sessions = list_transcripts(args.sessions_dir)
    if not sessions:
        console.print(f"[yellow]No transcripts found in {args.sessions_dir}[/yellow]")
        return 0
    console.print(render_listing(sessions))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Inspect recorded Server Query transcripts")
    commands = parser.add_subparsers(dest="action")

    show = commands.add_parser("show", help="Show one transcript")
    show.add_argument("transcript", help="Path to a .jsonl transcript")
    show.add_argument("--only", choices=SECTIONS, help="Show a single section")
    show.add_argument("--tail", type=int, help="Only analyse the last N records")
    show.add_argument("--pager", action="store_true", help="Page the output")
    show.add_argument("--fail-on-rejected", action="store_true",
                      help="Exit with status 1 if any command was rejected")
    show.set_defaults(func=show_command)

    listing = commands.add_parser("list", help="List recorded transcripts")
    listing.add_argument("--sessions-dir", default="sessions", help="Transcript directory")
    listing.set_defaults(func=list_command)
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not getattr(args, "func", None):
        parser.print_help()
        return 1
    return args.func(args, Console())


if __name__ == "__main__":
    sys.exit(main())
