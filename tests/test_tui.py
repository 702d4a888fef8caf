"""
Tests for the transcript viewer.
"""

import pytest
from rich.console import Console
from src.tsquery.protocol import ServerResponse, build_reply
from src.tsquery.session import SessionRecorder, load_transcript
from src.tui.replay import (
    TranscriptAnalysis, format_offset, main, render_transcript
)

OK = "error id=0 msg=ok"


def record_line(recorder, line):
    recorder.record_response(line, ServerResponse.decode(line))


def record_bot_session(directory, session_id="bot_session"):
    """Record a bootstrap, two chats and a reply the way the bot does."""
    recorder = SessionRecorder(session_id, output_dir=str(directory))
    recorder.record_event("connection", "Connected to ts.example.com:10011")
    for command in ("login bot secret", "use 1", "servernotifyregister event=textchannel"):
        recorder.record_request(command)
        record_line(recorder, OK)
    record_line(recorder, "notifytextmessage targetmode=1 msg=.ping invokerid=5 "
                          "invokername=Bob invokeruid=abc=")
    recorder.record_request(build_reply(5, "pong back"))
    record_line(recorder, "notifytextmessage targetmode=1 msg=how\\sare\\syou invokerid=7 "
                          "invokername=Alice invokeruid=xyz")
    record_line(recorder, OK)
    return recorder


def render_text(analysis, sections=("commands", "chat", "problems")):
    console = Console(record=True, width=200)
    console.print(render_transcript(analysis, sections))
    return console.export_text()


class TestTranscriptAnalysis:
    """Test cases for rebuilding exchanges and chats from records."""

    def test_pairs_commands_with_acknowledgments(self, tmp_path):
        transcript = load_transcript(record_bot_session(tmp_path).close())
        analysis = TranscriptAnalysis(transcript)

        commands = [e.command for e in analysis.exchanges]
        assert commands == ["login", "use", "servernotifyregister", "sendtextmessage"]
        assert all(e.ok for e in analysis.exchanges)
        assert all(e.latency >= 0 for e in analysis.exchanges)
        assert analysis.exchanges[0].request["line"] == "login bot ****"
        assert analysis.rejected == []
        assert analysis.stray_acks == 0

    def test_acknowledgment_after_interleaved_notification(self, tmp_path):
        """Test that an event between a reply and its ack does not break pairing."""
        analysis = TranscriptAnalysis(load_transcript(record_bot_session(tmp_path).close()))

        reply = analysis.exchanges[-1]
        assert reply.command == "sendtextmessage"
        assert reply.answered
        assert reply.ack["relative_time"] >= analysis.chats[1].record["relative_time"]

    def test_decodes_chat_messages(self, tmp_path):
        analysis = TranscriptAnalysis(load_transcript(record_bot_session(tmp_path).close()))

        bob, alice = analysis.chats
        assert bob.message.text == ".ping"
        assert bob.message.invoker_id == 5
        assert bob.message.invoker_name == "Bob"
        assert bob.message.invoker_uid == "abc="
        assert bob.reply_text == "pong back"
        assert alice.message.text == "how are you"
        assert alice.reply is None
        assert alice.reply_text == ""

    def test_rejected_command(self, tmp_path):
        recorder = SessionRecorder("rejected", output_dir=str(tmp_path))
        recorder.record_request("login bot wrong")
        record_line(recorder, "error id=520 msg=invalid\\sloginname\\sor\\spassword")
        recorder.record_event("error", "Startup failed: invalid loginname or password",
                              {"error_type": "startup_failed"})

        analysis = TranscriptAnalysis(load_transcript(recorder.close()))

        (login,) = analysis.rejected
        assert login.error_id == "520"
        assert login.result == "error 520: invalid loginname or password"
        assert [p.kind for p in analysis.problems] == ["rejected", "error"]
        assert "login: error 520" in analysis.problems[0].detail

    def test_unanswered_command(self, tmp_path):
        recorder = SessionRecorder("cut", output_dir=str(tmp_path))
        recorder.record_request("use 1")
        analysis = TranscriptAnalysis(load_transcript(str(recorder.path)))

        (use,) = analysis.exchanges
        assert not use.answered
        assert use.result == "no reply"
        assert use.latency is None
        assert analysis.rejected == []
        recorder.close()

    def test_undecodable_chat_is_a_problem(self, tmp_path):
        recorder = SessionRecorder("bad_event", output_dir=str(tmp_path))
        record_line(recorder, "notifytextmessage msg=hi invokerid=5_0 invokername=Bob")

        analysis = TranscriptAnalysis(load_transcript(recorder.close()))

        assert analysis.chats == []
        (problem,) = analysis.problems
        assert problem.kind == "undecodable"
        assert "invokerid" in problem.detail

    def test_tail_starting_mid_exchange(self, tmp_path):
        recorder = record_bot_session(tmp_path)
        transcript = load_transcript(recorder.close(), tail=1)

        analysis = TranscriptAnalysis(transcript)

        assert analysis.exchanges == []
        assert analysis.stray_acks == 1

    def test_format_offset(self):
        assert format_offset(1.5) == "+1.500s"
        assert format_offset(None) == "-"


class TestRendering:
    """Test cases for the rich output."""

    def test_render_all_sections(self, tmp_path):
        analysis = TranscriptAnalysis(load_transcript(record_bot_session(tmp_path).close()))

        text = render_text(analysis)

        assert "bot_session" in text
        assert "4 commands, 0 rejected, 2 chat messages" in text
        assert "servernotifyregister event=textchannel" in text
        assert "Bob (#5)" in text
        assert "how are you" in text
        assert "pong back" in text
        assert "secret" not in text

    def test_render_single_section(self, tmp_path):
        analysis = TranscriptAnalysis(load_transcript(record_bot_session(tmp_path).close()))

        text = render_text(analysis, ["chat"])

        assert "Bob (#5)" in text
        assert "Commands" not in text
        assert "Problems" not in text

    def test_render_incomplete_transcript(self, tmp_path):
        recorder = record_bot_session(tmp_path)
        text = render_text(TranscriptAnalysis(load_transcript(str(recorder.path))))

        assert "did not close cleanly" in text
        recorder.close()


class TestReplayCommands:
    """Test cases for the viewer command line."""

    @pytest.fixture(autouse=True)
    def wide_console(self, monkeypatch):
        monkeypatch.setenv("COLUMNS", "200")

    def test_show(self, tmp_path, capsys):
        path = record_bot_session(tmp_path).close()

        assert main(["show", path]) == 0

        out = capsys.readouterr().out
        assert "servernotifyregister" in out
        assert "Alice (#7)" in out

    def test_show_fail_on_rejected(self, tmp_path):
        recorder = SessionRecorder("rejected", output_dir=str(tmp_path))
        recorder.record_request("use 9")
        record_line(recorder, "error id=1024 msg=invalid\\sserverID")
        path = recorder.close()

        assert main(["show", path]) == 0
        assert main(["show", path, "--fail-on-rejected"]) == 1

    def test_show_missing_file(self, capsys):
        assert main(["show", "/nonexistent/session.jsonl"]) == 1
        assert "Cannot read transcript" in capsys.readouterr().out

    def test_list(self, tmp_path, capsys):
        record_bot_session(tmp_path, "session_20260101_120000").close()

        assert main(["list", "--sessions-dir", str(tmp_path)]) == 0

        out = capsys.readouterr().out
        assert "session_20260101_120000" in out
        assert "KiB" in out

    def test_list_empty(self, tmp_path, capsys):
        assert main(["list", "--sessions-dir", str(tmp_path)]) == 0
        assert "No transcripts found" in capsys.readouterr().out

    def test_no_action(self, capsys):
        assert main([]) == 1
        assert "usage" in capsys.readouterr().out

    def test_bad_section(self):
        with pytest.raises(SystemExit):
            main(["show", "x.jsonl", "--only", "everything"])
