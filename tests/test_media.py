import subprocess

import pytest
from PIL import Image

from thumbreel import media
from thumbreel.errors import DecodeError, ProbeError


def test_parse_probe_reads_first_video_stream():
    data = {
        "streams": [
            {"codec_type": "audio"},
            {"codec_type": "video", "width": 1920, "height": 1080},
        ],
        "format": {"duration": "12.5"},
    }
    probe = media.parse_probe(data)
    assert (probe.width, probe.height, probe.duration) == (1920, 1080, 12.5)


def test_parse_probe_without_video_stream():
    with pytest.raises(ProbeError, match="No valid video stream found"):
        media.parse_probe({"streams": [{"codec_type": "audio"}]})


def test_probe_video_timeout(monkeypatch):
    def fake_run(cmd, **kwargs):
        raise subprocess.TimeoutExpired(cmd, kwargs["timeout"])

    monkeypatch.setattr(media.subprocess, "run", fake_run)
    with pytest.raises(ProbeError):
        media.probe_video("clip.mp4", timeout=1)


def test_capture_frame_builds_scale_filter(monkeypatch, tmp_path):
    seen = {}
    output = tmp_path / "frame.jpg"

    def fake_run(cmd, **kwargs):
        seen["cmd"] = cmd
        output.write_bytes(b"jpeg")
        return subprocess.CompletedProcess(cmd, 0, "", "")

    monkeypatch.setattr(media.subprocess, "run", fake_run)
    media.capture_frame("clip.mp4", str(output), 5.0, width=640, height=None)

    assert "scale=640:-2" in seen["cmd"]
    assert seen["cmd"][seen["cmd"].index("-ss") + 1] == "5.000"


def test_capture_frame_failure(monkeypatch, tmp_path):
    def fake_run(cmd, **kwargs):
        return subprocess.CompletedProcess(cmd, 1, "", "Invalid data found")

    monkeypatch.setattr(media.subprocess, "run", fake_run)
    with pytest.raises(DecodeError, match="Invalid data found"):
        media.capture_frame("clip.mp4", str(tmp_path / "f.jpg"), 0.0, width=640, height=360)


def test_capture_frame_missing_binary(monkeypatch, tmp_path):
    with pytest.raises(DecodeError):
        media.capture_frame(
            "clip.mp4",
            str(tmp_path / "f.jpg"),
            0.0,
            width=640,
            height=360,
            ffmpeg_path=str(tmp_path / "no-ffmpeg"),
        )


def test_frame_brightness(tmp_path):
    dark = tmp_path / "dark.jpg"
    light = tmp_path / "light.jpg"
    Image.new("RGB", (8, 8), (0, 0, 0)).save(dark)
    Image.new("RGB", (8, 8), (255, 255, 255)).save(light)

    assert media.frame_brightness(str(dark)) < 0.05
    assert media.frame_brightness(str(light)) > 0.95
