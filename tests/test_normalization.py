from telemetrykit.normalization import (
    NormalizedTags,
    normalize_name,
    normalize_tags,
    normalize_unit,
    truncate,
)


def test_truncate_ascii_chars():
    assert truncate("abcde", 3) == "abc"


def test_truncate_unicode_chars():
    assert truncate("😀😀😀😀😀", 3) == "😀😀😀"


def test_truncate_short_string_unchanged():
    assert truncate("ab", 3) == "ab"


def test_name_from():
    assert normalize_name("aA1_-./+ö{😀\n\t\r\\| ,") == "aA1_-.____________"


def test_name_length_restriction():
    assert normalize_name("a" * 155) == "a" * 150


def test_unit_from():
    assert normalize_unit("aA1_-./+ö{😀\n\t\r\\| ,") == "aA1_"


def test_unit_from_empty():
    assert normalize_unit("") == "none"


def test_unit_from_empty_after_normalization():
    assert normalize_unit("+") == "none"


def test_unit_length_restriction():
    assert normalize_unit("a" * 20) == "a" * 15


def test_replacement_characters():
    tags = {
        "a\na": "a\na",
        "b\rb": "b\rb",
        "c\tc": "c\tc",
        "d\\d": "d\\d",
        "e|e": "e|e",
        "f,f": "f,f",
    }
    expected = "aa:a\\na,bb:b\\rb,cc:c\\tc,dd:d\\\\d,ee:e\\u{7c}e,ff:f\\u{2c}f"
    assert str(normalize_tags(tags)) == expected


def test_empty_tags():
    tags = {"+": "a", "a": "", "": "a"}
    assert str(normalize_tags(tags)) == ""


def test_special_characters():
    tags = {"aA1_-./+ö{ 😀": "aA1_-./+ö{ 😀"}
    assert str(normalize_tags(tags)) == "aA1_-./:aA1_-./+ö{ 😀"


def test_add_default_tags():
    default_tags = {"release": "default_release", "environment": "production"}
    actual = normalize_tags({}).with_default_tags(default_tags)
    assert str(actual) == "environment:production,release:default_release"


def test_override_default_tags():
    default_tags = {"release": "default_release", "environment": "production"}
    actual = normalize_tags(
        {"release": "custom_release", "environment": "custom_env"}
    ).with_default_tags(default_tags)
    assert str(actual) == "environment:custom_env,release:custom_release"


def test_length_restriction():
    expected = "dk" * 16 + ":" + "dv" * 100 + "," + "k" * 32 + ":" + "v" * 200
    actual = normalize_tags({"k" * 35: "v" * 210}).with_default_tags(
        {"dk" * 35: "dv" * 210}
    )
    assert str(actual) == expected


def test_other_control_characters_dropped():
    assert str(normalize_tags({"k": "a\x00b\x07c"})) == "k:abc"


def test_with_default_tags_does_not_mutate_original():
    base = normalize_tags({"foo": "bar"})
    merged = base.with_default_tags({"release": "default_release"})
    assert str(base) == "foo:bar"
    assert str(merged) == "foo:bar,release:default_release"


def test_normalized_tags_equality():
    assert normalize_tags({"foo": "bar"}) == NormalizedTags({"foo": "bar"})