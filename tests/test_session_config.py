"""Tests for per-connection Live session configuration."""

import pytest

from apsara.live.session_config import (
    AVAILABLE_VOICES,
    MEDIA_RESOLUTIONS,
    SessionConfig,
    config_options,
)

DECLARATIONS = [
    {"name": "calculate", "description": "", "parameters": {}},
    {"name": "create_canvas", "description": "", "parameters": {}},
    {"name": "run_code", "description": "", "parameters": {}},
]


class TestBuild:
    def test_defaults(self):
        cfg = SessionConfig.build()
        assert cfg.response_modalities == ("AUDIO",)
        assert cfg.audio_enabled
        assert cfg.session_resumption is True
        assert cfg.function_declarations == ()

    def test_declarations_are_kept(self):
        cfg = SessionConfig.build({}, DECLARATIONS)
        assert cfg.tool_names == ["calculate", "create_canvas", "run_code"]

    def test_enabled_tools_filter(self):
        cfg = SessionConfig.build({"enabledTools": ["run_code"]}, DECLARATIONS)
        assert cfg.tool_names == ["run_code"]

    def test_text_modality_is_forced_to_audio(self):
        cfg = SessionConfig.build({"responseModalities": ["TEXT"]})
        assert cfg.response_modalities == ("AUDIO",)

    def test_unknown_voice_is_accepted(self):
        cfg = SessionConfig.build({"voice": "Nobody"})
        assert cfg.voice == "Nobody"

    def test_temperature_is_clamped(self):
        assert SessionConfig.build({"temperature": 5}).temperature == 2.0
        assert SessionConfig.build({"temperature": -1}).temperature == 0.0
        assert SessionConfig.build({"temperature": None}).temperature is None

    def test_object_flags_count_as_enabled(self):
        cfg = SessionConfig.build({"contextWindowCompression": {}, "inputAudioTranscription": {}})
        assert cfg.context_compression is True
        assert cfg.input_transcription is True

    def test_media_resolution(self):
        assert SessionConfig.build({"mediaResolution": "HIGH"}).media_resolution == "high"
        with pytest.raises(ValueError, match="mediaResolution"):
            SessionConfig.build({"mediaResolution": "8k"})

    def test_async_modes(self):
        cfg = SessionConfig.build({"toolAsyncModes": {"run_code": True, "calculate": False}})
        assert cfg.is_async("run_code")
        assert not cfg.is_async("calculate")
        # Absent means sync
        assert not cfg.is_async("create_canvas")

    def test_async_modes_must_be_object(self):
        with pytest.raises(ValueError):
            SessionConfig.build({"toolAsyncModes": ["run_code"]})

    def test_overrides_must_be_object(self):
        with pytest.raises(ValueError):
            SessionConfig.build(["voice"])

    @pytest.mark.parametrize(
        "overrides, key",
        [
            ({"responseModalities": 5}, "responseModalities"),
            ({"temperature": {}}, "temperature"),
            ({"temperature": "warm"}, "temperature"),
            ({"thinkingBudget": [1]}, "thinkingBudget"),
            ({"thinkingBudget": True}, "thinkingBudget"),
            ({"enabledTools": 3}, "enabledTools"),
        ],
    )
    def test_badly_typed_values_are_rejected(self, overrides, key):
        with pytest.raises(ValueError, match=key):
            SessionConfig.build(overrides, DECLARATIONS)

    def test_numeric_strings_are_accepted(self):
        cfg = SessionConfig.build({"temperature": "0.5", "thinkingBudget": "256"})
        assert cfg.temperature == 0.5
        assert cfg.thinking_budget == 256

    def test_tools_block(self):
        cfg = SessionConfig.build({"tools": {"googleSearch": True, "functionCalling": False}})
        assert cfg.google_search is True
        assert cfg.function_calling is False


class TestMerged:
    def test_merged_keeps_earlier_values(self):
        cfg = SessionConfig.build({"voice": "Puck"}, DECLARATIONS)
        merged = cfg.merged({"temperature": 1.0})
        assert merged.voice == "Puck"
        assert merged.temperature == 1.0
        assert merged.tool_names == cfg.tool_names
        # Original is untouched
        assert cfg.temperature == 0.7

    def test_merged_without_declarations_keeps_tools(self):
        cfg = SessionConfig.build({}, DECLARATIONS)
        assert cfg.merged({"enabledTools": ["calculate"]}).tool_names == cfg.tool_names
        assert cfg.merged({"enabledTools": ["calculate"]}, DECLARATIONS).tool_names == ["calculate"]


class TestViews:
    def test_to_state(self):
        state = SessionConfig.build({"voice": "Kore", "toolAsyncModes": {"run_code": True}}, DECLARATIONS).to_state()
        assert state["modalities"] == ["AUDIO"]
        assert state["voice"] == "Kore"
        assert state["toolAsyncModes"] == {"run_code": True}
        assert state["tools"] == ["calculate", "create_canvas", "run_code"]

    def test_config_options(self):
        options = config_options()
        assert options["voices"] == AVAILABLE_VOICES
        assert options["mediaResolutions"] == list(MEDIA_RESOLUTIONS)
        assert options["defaults"]["responseModalities"] == ["AUDIO"]
        assert options["audio"]["INPUT_SAMPLE_RATE"] == 16000
        assert options["audio"]["OUTPUT_SAMPLE_RATE"] == 24000
