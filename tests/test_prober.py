"""Tests for CommandProber."""

from camled.camera.prober import CAPTURE_TOOLS, CaptureMode, CommandProber


def _which(installed):
    paths = {name: f"/usr/bin/{name}" for name in installed}
    return paths.get


class TestCommandProber:

    def test_first_installed_candidate_wins(self):
        prober = CommandProber(
            ("rpicam-vid", "libcamera-vid", "libcamera-jpeg"),
            which=_which({"libcamera-vid", "libcamera-jpeg"}),
        )

        result = prober.probe()

        assert result is not None
        assert result.tool.name == "libcamera-vid"
        assert result.tool.mode is CaptureMode.STREAM
        assert result.executable == "/usr/bin/libcamera-vid"

    def test_nothing_installed_returns_none(self):
        prober = CommandProber(("rpicam-vid", "raspivid"), which=_which(set()))
        assert prober.probe() is None

    def test_script_tool_needs_transcoder(self):
        prober = CommandProber(("raspivid", "libcamera-jpeg"), which=_which({"raspivid", "libcamera-jpeg"}))
        assert prober.probe().tool.name == "libcamera-jpeg"

        prober = CommandProber(("raspivid",), which=_which({"raspivid", "ffmpeg"}))
        result = prober.probe()
        assert result.tool.mode is CaptureMode.SCRIPT
        assert result.paths["ffmpeg"] == "/usr/bin/ffmpeg"

    def test_unknown_names_are_skipped(self):
        prober = CommandProber(("no-such-tool", "rpicam-jpeg"), which=_which({"rpicam-jpeg"}))
        assert prober.probe().tool.mode is CaptureMode.STILL

    def test_probe_has_no_memory_between_calls(self):
        installed = {"rpicam-vid"}
        prober = CommandProber(("rpicam-vid",), which=lambda name: "/x" if name in installed else None)
        assert prober.probe() is not None

        installed.clear()

        assert prober.probe() is None

    def test_kill_patterns_cover_every_candidate(self):
        prober = CommandProber(("rpicam-vid", "raspivid", "bogus"))

        patterns = prober.kill_patterns()

        assert "rpicam-vid" in patterns
        assert "raspivid" in patterns
        assert "ffmpeg" not in patterns
        assert len(patterns) == len(set(patterns))

    def test_default_registry_has_legacy_still_tools(self):
        assert CAPTURE_TOOLS["libcamera-jpeg"].mode is CaptureMode.STILL
        assert CAPTURE_TOOLS["raspivid"].requires == ("ffmpeg",)
