# ─────────────────────────────────────────────────────────────────────────────
# Prompt Template Tests
# ─────────────────────────────────────────────────────────────────────────────
# Pure string manipulation, no I/O.
# ─────────────────────────────────────────────────────────────────────────────

import pytest

from streetscene.pipeline.prompts import (
    BASE_DESCRIPTION_PROMPT,
    STYLE_PRESETS,
    TWIST_PREFIX,
    build_description_prompt,
    compose_style_directive,
)


class TestBuildDescriptionPrompt:
    def test_no_directive_is_base_prompt(self):
        assert build_description_prompt() == BASE_DESCRIPTION_PROMPT
        assert build_description_prompt(None) == BASE_DESCRIPTION_PROMPT

    def test_blank_directive_is_ignored(self):
        assert build_description_prompt("   ") == BASE_DESCRIPTION_PROMPT

    def test_twist_comes_after_base(self):
        prompt = build_description_prompt("cyberpunk")

        assert prompt.startswith(BASE_DESCRIPTION_PROMPT)
        assert prompt.endswith("cyberpunk")
        assert prompt == BASE_DESCRIPTION_PROMPT + TWIST_PREFIX + "cyberpunk"

    def test_directive_is_stripped(self):
        assert build_description_prompt("  rainy night \n").endswith(": rainy night")

    def test_base_prompt_asks_for_positions(self):
        assert "top left corner" in BASE_DESCRIPTION_PROMPT
        assert "ignore any ui elements" in BASE_DESCRIPTION_PROMPT


class TestComposeStyleDirective:
    def test_nothing_selected(self):
        assert compose_style_directive(None, None) is None
        assert compose_style_directive("", "  ") is None

    def test_preset_only(self):
        assert compose_style_directive("fantasy", None) == STYLE_PRESETS["fantasy"][1]

    def test_custom_only(self):
        assert compose_style_directive(None, " add snow ") == "add snow"

    def test_preset_then_custom(self):
        directive = compose_style_directive("steampunk", "at dusk")
        assert directive == f"{STYLE_PRESETS['steampunk'][1]}. at dusk"

    @pytest.mark.parametrize("style", ["none", "unknown", "CYBERPUNK"])
    def test_unknown_keys_contribute_nothing(self, style):
        assert compose_style_directive(style, None) is None


class TestStylePresets:
    def test_known_keys(self):
        assert set(STYLE_PRESETS) == {
            "future",
            "past",
            "post_apocalyptic",
            "fantasy",
            "cyberpunk",
            "steampunk",
        }

    @pytest.mark.parametrize("key", sorted(STYLE_PRESETS))
    def test_directives_are_twists(self, key):
        label, directive = STYLE_PRESETS[key]
        assert label
        assert directive.startswith("now, the twist:")
