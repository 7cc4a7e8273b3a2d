"""
Unit tests for template placeholder substitution.
"""

from api.src.services.templating import format_value, interpolate


class TestFormatValue:
    """Test rendering of submission values"""

    def test_none_is_empty(self):
        assert format_value(None) == ""

    def test_list_joined_with_comma(self):
        assert format_value(["red", "green", None]) == "red, green, "

    def test_scalars_use_str(self):
        assert format_value(42) == "42"
        assert format_value(True) == "True"


class TestInterpolate:
    """Test {{placeholder}} substitution"""

    def test_form_title_and_submission_keys(self):
        result = interpolate(
            "New {{form_title}} entry from {{name}}",
            "Contact",
            {"name": "Ada"},
        )
        assert result == "New Contact entry from Ada"

    def test_unknown_placeholders_are_kept(self):
        assert interpolate("Hi {{missing}}", "Form", {}) == "Hi {{missing}}"

    def test_whitespace_inside_braces(self):
        assert interpolate("{{ name }}", "Form", {"name": "Ada"}) == "Ada"

    def test_list_values(self):
        assert interpolate("{{tags}}", "Form", {"tags": ["a", "b"]}) == "a, b"

    def test_extra_wins_over_submission(self):
        result = interpolate("{{date}}", "Form", {"date": "user"}, {"date": "2024-05-01"})
        assert result == "2024-05-01"

    def test_empty_template(self):
        assert interpolate(None, "Form") == ""
        assert interpolate("", "Form") == ""
