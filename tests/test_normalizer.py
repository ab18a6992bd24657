import pytest

from uindex.core.config import ActiveApplication
from uindex.perception.normalizer import (
    ElementNormalizer, canonical_role, is_relevant, score_confidence, UNLABELED,
)
from uindex.perception.scanner import RawElement

from .conftest import NOW, make_element

APP = ActiveApplication(name="Notes", window_title="Untitled")


@pytest.mark.parametrize("raw_role, expected", [
    ("AXButton", "button"),
    ("ButtonControl", "button"),
    ("AXTextField", "text field"),
    ("EditControl", "text field"),
    ("AXCheckBox", "checkbox"),
    ("SomethingNew", "somethingnew"),
    ("", "unknown"),
])
def test_canonical_role(raw_role, expected):
    assert canonical_role(raw_role) == expected


def test_confidence_score():
    assert score_confidence("button", "Save", "x") == pytest.approx(1.0)
    assert score_confidence("button", "Save", None) == pytest.approx(1.0)
    assert score_confidence("group", UNLABELED, None) == pytest.approx(0.5)
    assert score_confidence("static text", "Title", None) == pytest.approx(0.7)


def test_labels_and_generated_ids():
    raw = RawElement(role="AXButton", description="Close window", x=10, y=20, width=40, height=20)
    element = ElementNormalizer().normalize(raw, APP, 3, NOW)
    assert element.label == "Close window"
    assert element.value == "Close window"
    assert element.accessibility_id == "Notes_button_10_20"
    assert element.class_name == "NSButton"
    assert element.automation_id == "button_Close window_3"
    assert element.last_seen == NOW


def test_unlabeled_placeholder():
    raw = RawElement(role="AXGroup", x=0, y=0, width=400, height=300)
    element = ElementNormalizer().normalize(raw, APP, 0, NOW)
    assert element.label == UNLABELED
    assert element.value is None
    assert element.class_name == "NSView"


def test_relevance_filter():
    assert is_relevant(make_element(role="button", width=20, height=20))
    assert not is_relevant(make_element(role="button", width=4, height=20))
    assert not is_relevant(make_element(role="button", visible=False))
    assert is_relevant(make_element(role="static text", label="", width=10, height=10, value="hi"))
    assert not is_relevant(make_element(role="static text", label=UNLABELED, width=10, height=8))
    assert is_relevant(make_element(role="group", label=UNLABELED, width=60, height=30))
    assert not is_relevant(make_element(role="group", label=UNLABELED, width=40, height=30))
    assert is_relevant(make_element(role="mystery", label="abc", width=10, height=10))
    assert not is_relevant(make_element(role="mystery", label="ab", width=10, height=10))


def test_normalize_all_filters_and_bounds_confidence():
    raws = [
        RawElement(role="AXButton", title="Save", x=150, y=300, width=80, height=30),
        RawElement(role="AXButton", title="Tiny", x=0, y=0, width=3, height=3),
        RawElement(role="AXGroup", x=0, y=0, width=10, height=10),
        RawElement(role="AXTextField", value="hello", x=10, y=10, width=200, height=24),
    ]
    elements = ElementNormalizer().normalize_all(raws, APP, NOW)
    assert [e.label for e in elements] == ["Save", "hello"]
    assert all(0.0 <= e.confidence <= 1.0 for e in elements)
    assert all(e.identity == ("Notes", "Untitled") for e in elements)
