from shared.naming import resolve_display_name


def test_metadata_name_wins() -> None:
    assert resolve_display_name({"name": "Alice", "full_name": "Alice Smith"}, "a@x.com") == "Alice"


def test_full_name_used_when_name_missing() -> None:
    assert resolve_display_name({"full_name": "Bob Lee"}, "bob@x.com") == "Bob Lee"


def test_email_local_part_fallback() -> None:
    assert resolve_display_name({}, "carol@x.com") == "carol"


def test_blank_values_fall_through() -> None:
    assert resolve_display_name({"name": "   ", "full_name": ""}, "dina@x.com") == "dina"


def test_literal_default_when_nothing_usable() -> None:
    assert resolve_display_name(None, None) == "User"
    assert resolve_display_name({"name": 42}, "@x.com") == "User"
