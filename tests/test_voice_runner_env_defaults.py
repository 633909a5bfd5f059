def test_voice_runner_env_defaults_are_used(monkeypatch):
    # The CLI defaults are wired to the same variables `--mode voice` reads.
    monkeypatch.setenv("AGRI_BUDDY_PIPER_BIN", "/tmp/piper")
    monkeypatch.setenv("AGRI_BUDDY_PIPER_MODEL", "/tmp/voice.onnx")
    monkeypatch.setenv("AGRI_BUDDY_PIPER_TIMEOUT_S", "15")
    monkeypatch.setenv("AGRI_BUDDY_STT_MODEL", "medium")
    monkeypatch.setenv("AGRI_BUDDY_STT_DEVICE", "cuda")
    monkeypatch.setenv("AGRI_BUDDY_TTS_ENABLED", "false")

    from scripts.voice_diary import build_parser

    args = build_parser().parse_args(["--location", "2号ハウス"])
    assert args.piper_bin == "/tmp/piper"
    assert args.piper_model == "/tmp/voice.onnx"
    assert args.piper_timeout == 15.0
    assert args.stt_model == "medium"
    assert args.stt_device == "cuda"
    assert args.tts_enabled == "false"
    assert args.location == "2号ハウス"


def test_voice_runner_builtin_defaults(monkeypatch):
    for name in (
        "AGRI_BUDDY_PIPER_BIN",
        "AGRI_BUDDY_PIPER_MODEL",
        "AGRI_BUDDY_PIPER_TIMEOUT_S",
        "AGRI_BUDDY_STT_MODEL",
        "AGRI_BUDDY_STT_DEVICE",
        "AGRI_BUDDY_TTS_ENABLED",
    ):
        monkeypatch.delenv(name, raising=False)

    from scripts.voice_diary import _flag, build_parser

    args = build_parser().parse_args([])
    assert args.piper_bin == "piper"
    assert args.piper_model is None
    assert args.piper_timeout == 60.0
    assert args.stt_model == "small"
    assert args.stt_device == "cpu"
    assert args.artifacts_dir == "data/sessions"
    assert args.sample_rate == 16000
    assert _flag(args.tts_enabled) is True
    assert _flag("off") is False
