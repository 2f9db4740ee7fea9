"""Unit tests for helpers in dns_syncer.models.

Tests cover:
- Boolean parsing (parse_bool)
- Name qualification against a zone (qualify_name)
- Content comparison (normalize_content, content_matches)
"""

from dns_syncer.errors import AuthError, ValidationError
from dns_syncer.models import (
    Outcome,
    RecordOp,
    RecordType,
    ReconciliationResult,
    ResolvedTarget,
    content_matches,
    normalize_content,
    parse_bool,
    qualify_name,
)

# =============================================================================
# Boolean Parsing Tests
# =============================================================================


def test_parse_bool_none_returns_default() -> None:
    assert parse_bool(None) is True
    assert parse_bool(None, default=False) is False


def test_parse_bool_truthy_strings() -> None:
    for value in ("1", "true", "TRUE", " yes ", "y", "on"):
        assert parse_bool(value) is True, value


def test_parse_bool_falsy_strings() -> None:
    for value in ("0", "false", "no", "off", ""):
        assert parse_bool(value) is False, value


def test_parse_bool_passes_booleans_through() -> None:
    assert parse_bool(False) is False
    assert parse_bool(True, default=False) is True


# =============================================================================
# Name Qualification Tests
# =============================================================================


def test_qualify_relative_name() -> None:
    assert qualify_name("home", "example.org") == "home.example.org"


def test_qualify_already_qualified_name() -> None:
    assert qualify_name("home.example.org.", "example.org") == "home.example.org"


def test_qualify_apex() -> None:
    assert qualify_name("@", "example.org") == "example.org"
    assert qualify_name("Example.org", "example.org") == "example.org"


def test_qualify_is_case_insensitive() -> None:
    assert qualify_name("Home", "EXAMPLE.org") == "home.example.org"


def test_suffix_without_dot_is_not_treated_as_qualified() -> None:
    assert qualify_name("myexample.org", "example.org") == "myexample.org.example.org"


# =============================================================================
# Content Comparison Tests
# =============================================================================


def test_ipv6_content_is_compared_canonically() -> None:
    assert content_matches(RecordType.AAAA, "2001:DB8:0:0::1", "2001:db8::1")


def test_hostname_content_ignores_trailing_dot_and_case() -> None:
    assert content_matches(RecordType.CNAME, "Target.Example.org.", "target.example.org")


def test_txt_content_ignores_surrounding_quotes() -> None:
    assert normalize_content(RecordType.TXT, '"v=spf1 -all"') == "v=spf1 -all"


def test_txt_content_is_case_sensitive() -> None:
    assert not content_matches(RecordType.TXT, "Hello", "hello")


def test_different_addresses_do_not_match() -> None:
    assert not content_matches(RecordType.A, "1.2.3.4", "1.2.3.5")


# =============================================================================
# Target and Result Tests
# =============================================================================


def test_target_key_and_str() -> None:
    target = ResolvedTarget(
        type=RecordType.A, name="home", zone="example.org", provider="cf", op=RecordOp.CREATE
    )

    assert target.key == ("A", "home.example.org", "cf", "example.org")
    assert str(target) == "A home.example.org @ cf/example.org"


def test_target_equality_ignores_error() -> None:
    kwargs = dict(type=RecordType.A, name="h", zone="z", provider="p", op=RecordOp.CREATE, content="1.2.3.4")

    assert ResolvedTarget(**kwargs) == ResolvedTarget(error=RuntimeError("x"), **kwargs)


def test_failed_result_reports_error_class() -> None:
    target = ResolvedTarget(type=RecordType.A, name="h", zone="z", provider="p", op=RecordOp.CREATE)
    result = ReconciliationResult(target=target, outcome=Outcome.FAILED, error=AuthError("HTTP 401"))

    assert result.failed is True
    assert result.error_class == "AuthError"


def test_validation_error_names_the_record() -> None:
    error = ValidationError("unknown provider 'x'", "A home")

    assert str(error) == "A home: unknown provider 'x'"
    assert error.fatal is True
