from browsermux.config import ServerConfig
from browsermux.detect import (
    Detection,
    DetectionContext,
    FallbackDetector,
    PipedStdioDetector,
    detect_protocol,
)
from browsermux.server import resolve_protocol


def test_no_signals_falls_back_to_http():
    detection = detect_protocol(DetectionContext())
    assert detection.protocol == "http"
    assert detection.confidence == 50
    assert detection.source == "fallback"


def test_fallback_resolves_to_default_bind_address():
    config = ServerConfig()
    assert resolve_protocol(config, DetectionContext()) == "http"
    assert (config.host, config.port) == ("0.0.0.0", 3000)


def test_explicit_flag_beats_environment_signals():
    ctx = DetectionContext(
        explicit="http",
        env={"CURSOR_SESSION": "1", "VSCODE_PID": "42"},
        stdin_isatty=False,
        stdout_isatty=False,
        parent_name="cursor",
    )
    detection = detect_protocol(ctx)
    assert detection.protocol == "http"
    assert detection.confidence == 100


def test_auto_is_not_an_explicit_choice():
    detection = detect_protocol(DetectionContext(explicit="auto"))
    assert detection.source == "fallback"


def test_environment_signals():
    assert detect_protocol(DetectionContext(env={"CLAUDE_DESKTOP": "1"})).protocol == "stdio"
    vscode = detect_protocol(DetectionContext(env={"VSCODE_PID": "1234"}))
    assert (vscode.protocol, vscode.confidence) == ("lsp", 80)


def test_environment_outranks_piped_stdio():
    ctx = DetectionContext(env={"ZED_TERM": "1"}, stdin_isatty=False, stdout_isatty=False)
    detection = detect_protocol(ctx)
    assert detection.protocol == "lsp"
    assert detection.source == "environment"


def test_parent_process_detection():
    by_cmdline = detect_protocol(DetectionContext(parent_cmdline="/applications/cursor.app/cursor --mcp"))
    assert (by_cmdline.protocol, by_cmdline.confidence) == ("stdio", 90)
    by_name = detect_protocol(DetectionContext(parent_name="code"))
    assert (by_name.protocol, by_name.confidence) == ("lsp", 80)


def test_piped_stdio_selects_stdio():
    detection = detect_protocol(DetectionContext(stdin_isatty=False, stdout_isatty=False))
    assert detection.protocol == "stdio"
    assert detection.confidence == 70


def test_ties_go_to_the_earlier_detector():
    class Tied:
        name = "tied"

        def detect(self, ctx):
            return Detection(True, 70, "sse", self.name)

    chain = (PipedStdioDetector(), Tied(), FallbackDetector())
    ctx = DetectionContext(stdin_isatty=False, stdout_isatty=False)
    assert detect_protocol(ctx, chain).protocol == "stdio"


def test_from_process_reads_current_environment(monkeypatch):
    monkeypatch.setenv("WINDSURF_IDE", "1")
    ctx = DetectionContext.from_process("auto")
    assert ctx.env["WINDSURF_IDE"] == "1"
    assert ctx.explicit == "auto"
