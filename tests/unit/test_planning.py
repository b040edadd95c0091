import pytest

from buildpilot.core.planning import is_complex_project, is_modification, should_plan_phases


@pytest.mark.parametrize(
    "prompt",
    [
        "change the header colour to blue",
        "Fix the login button",
        "remove the footer",
        "Make the font bigger",
    ],
)
def test_modifications_are_never_planned(prompt: str) -> None:
    assert is_modification(prompt)
    assert not should_plan_phases(prompt)


def test_short_simple_prompt_is_flat() -> None:
    assert not should_plan_phases("A landing page for my bakery")


def test_short_complex_prompt_is_planned() -> None:
    assert is_complex_project("A twitter clone")
    assert should_plan_phases("A twitter clone")


def test_long_prompt_is_planned() -> None:
    prompt = (
        "Build a recipe sharing site where cooks publish recipes with photos, "
        "ingredient lists, ratings and comments from other cooks"
    )
    assert len(prompt) >= 80
    assert should_plan_phases(prompt)


def test_whitespace_is_ignored_for_length() -> None:
    assert not should_plan_phases("   a pomodoro timer   " + " " * 100)
