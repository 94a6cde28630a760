import pytest

from oralprep.errors import ParseError, ProviderError
from oralprep.parsing import coerce_score, coerce_str_list, parse_provider_response


class TestParseProviderResponse:
	def test_plain_json(self):
		assert parse_provider_response('{"score": 72, "range": "60-80"}') == {"score": 72, "range": "60-80"}

	def test_markdown_fenced_json(self):
		text = '```json\n{"score": 55}\n```'
		assert parse_provider_response(text) == {"score": 55}

	def test_json_wrapped_in_prose(self):
		text = 'Here is my evaluation:\n{"score": 64, "justification": "ok"}\nHope this helps.'
		assert parse_provider_response(text)["score"] == 64

	@pytest.mark.parametrize("text", ["", "   ", "no json here", "{broken json", "[1, 2, 3]"])
	def test_unusable_replies_raise_parse_error(self, text):
		with pytest.raises(ParseError):
			parse_provider_response(text)

	def test_parse_error_is_a_provider_error(self):
		with pytest.raises(ProviderError):
			parse_provider_response("nothing")


class TestCoercion:
	@pytest.mark.parametrize(
		"value,expected",
		[(72, 72), ("85", 85), (72.5, 73), (-4, 0), (130, 100), ("99.4", 99)],
	)
	def test_coerce_score(self, value, expected):
		assert coerce_score(value) == expected

	@pytest.mark.parametrize("value", [None, "high", [], float("nan")])
	def test_coerce_score_rejects_non_numeric(self, value):
		with pytest.raises(ParseError):
			coerce_score(value)

	def test_coerce_str_list(self):
		assert coerce_str_list(["  good pace ", "", None, "rich words"]) == ["good pace", "rich words"]
		assert coerce_str_list("single point") == ["single point"]
		assert coerce_str_list(None) == []
		assert coerce_str_list({"a": 1}) == []
