# tests/test_mushaf.py
import pytest

from hatym.mushaf import resolve


def test_template_gives_plain_then_padded_candidates():
    assert resolve("https://cdn.example/pages/{page}.png", 7) == [
        "https://cdn.example/pages/7.png",
        "https://cdn.example/pages/007.png",
    ]


def test_three_digit_pages_are_not_duplicated():
    assert resolve("https://cdn.example/{page}.jpg", 604) == ["https://cdn.example/604.jpg"]


def test_plain_url_is_its_own_candidate():
    assert resolve("  http://cdn.example/page.png ", 3) == ["http://cdn.example/page.png"]


@pytest.mark.parametrize("value", [None, "", "   ", "ftp://cdn.example/{page}.png", "not a url", "https://"])
def test_unusable_values_give_nothing(value):
    assert resolve(value, 1) == []


def test_padded_placeholder_gives_a_single_candidate():
    assert resolve("https://cdn.example/{page3}.webp", 12) == ["https://cdn.example/012.webp"]
