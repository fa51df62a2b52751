import httpx
from typer.testing import CliRunner

from conftest import FakeVideoApi
from video_uploader import cli


runner = CliRunner()


def _serve(monkeypatch, api: FakeVideoApi) -> None:
    def open_client(api_url):
        return httpx.AsyncClient(transport=httpx.MockTransport(api.handler), base_url=api_url)

    monkeypatch.setattr(cli, "_open_client", open_client)
    monkeypatch.setattr(cli, "_prepare_logging", lambda verbose: None)


def test_upload_command_reports_progress_and_completion(monkeypatch, tmp_path):
    video = tmp_path / "lesson.mp4"
    video.write_bytes(b"\x00" * 2048)
    api = FakeVideoApi()
    _serve(monkeypatch, api)

    result = runner.invoke(cli.cli, ["upload", str(video), "--record-id", "r1", "--api-url", "http://api.test/api"])

    assert result.exit_code == 0, result.stdout
    assert "====> Selected lesson.mp4 (2.0 KB)" in result.stdout
    assert "====> Uploading" in result.stdout
    assert "100%" in result.stdout
    assert "====> Completed" in result.stdout
    assert "Record r1 is ready (playback id play-1)" in result.stdout


def test_upload_command_fails_when_processing_fails(monkeypatch, tmp_path):
    video = tmp_path / "lesson.mp4"
    video.write_bytes(b"\x00" * 2048)
    _serve(monkeypatch, FakeVideoApi(final_status="FAILED"))

    result = runner.invoke(cli.cli, ["upload", str(video), "--record-id", "r1", "--api-url", "http://api.test/api"])

    assert result.exit_code == 1
    assert "Upload failed: Input has no video track" in result.stdout


def test_upload_command_rejects_non_video(monkeypatch, tmp_path):
    notes = tmp_path / "notes.txt"
    notes.write_text("hello")
    api = FakeVideoApi()
    _serve(monkeypatch, api)

    result = runner.invoke(cli.cli, ["upload", str(notes), "--record-id", "r1", "--api-url", "http://api.test/api"])

    assert result.exit_code == 2
    assert api.calls == []


def test_watch_skips_records_that_are_not_processing(monkeypatch):
    _serve(monkeypatch, FakeVideoApi())

    result = runner.invoke(cli.cli, ["watch", "r1", "--api-url", "http://api.test/api"])

    assert result.exit_code == 0
    assert "Record r1 is COMPLETED; nothing to follow" in result.stdout
