"""
Unit tests for Gemini response sanitization
Covers fence stripping, JSON extraction, enum coercion and defaulting
"""
import json

import pytest

from backend.app.core.errors import ResponseParseError, ResponseValidationError
from backend.app.core.response_validator import (
    FALLBACK_BRAND_MENTION,
    FALLBACK_SOURCE,
    coerce_query_category,
    coerce_query_format,
    coerce_query_type,
    extract_json_array,
    extract_json_object,
    generate_fallback_result,
    has_minimum_fields,
    safe_json_parse,
    sanitize_analysis,
    sanitize_error_message,
    sanitize_generated_queries,
    sanitize_generated_query,
    strip_code_fences,
)
from backend.app.models.schemas import (
    NO_BRANDS_IDENTIFIED,
    UNKNOWN_SOURCE,
    VALID_QUERY_CATEGORIES,
    VALID_QUERY_TYPES,
    QueryFormat,
    QueryType,
)


@pytest.mark.unit
@pytest.mark.fast
class TestJsonExtraction:

    def test_strip_json_fence(self):
        assert strip_code_fences('```json\n{"a": 1}\n```') == '{"a": 1}'

    def test_strip_plain_fence(self):
        assert strip_code_fences('```\n[1, 2]\n```') == '[1, 2]'

    def test_backticks_inside_body_are_kept(self):
        body = '{"source": "docs with ```json blocks```"}'
        assert strip_code_fences(body) == body
        assert strip_code_fences("```json\n" + body + "\n```") == body

    def test_extract_object_from_prose(self):
        text = 'Here is the analysis: {"source": "Reddit", "nested": {"x": "}"}} Hope that helps!'
        assert json.loads(extract_json_object(text)) == {"source": "Reddit", "nested": {"x": "}"}}

    def test_extract_array_from_prose(self):
        text = 'Sure! [{"query_text": "a [b]"}] done'
        assert json.loads(extract_json_array(text)) == [{"query_text": "a [b]"}]

    def test_safe_json_parse_raises_parse_error(self):
        with pytest.raises(ResponseParseError) as exc_info:
            safe_json_parse("{not json")
        assert "Failed to parse JSON" in str(exc_info.value)


@pytest.mark.unit
@pytest.mark.fast
class TestEnumCoercion:

    @pytest.mark.parametrize("value,expected", [
        ("Educational", "Educational"),
        ("Service-Aligned", "Service-Aligned"),
        ("service aligned query", "Service-Aligned"),
        ("ALIGNED", "Service-Aligned"),
        ("commercial", "Educational"),
        ("", "Educational"),
        (None, "Educational"),
        (42, "Educational"),
    ])
    def test_query_type(self, value, expected):
        assert coerce_query_type(value) == expected

    @pytest.mark.parametrize("value,expected", [
        ("Trend explanation", "Trend explanation"),
        ("trend EXPLANATION", "Trend explanation"),
        ("Competitor benchmarking analysis", "Competitor benchmarking"),
        ("operational", "Operational training"),
        ("foo", "Industry monitoring"),
        ("", "Industry monitoring"),
        (None, "Industry monitoring"),
    ])
    def test_query_category(self, value, expected):
        assert coerce_query_category(value) == expected

    @pytest.mark.parametrize("value,expected", [
        ("Keyword phrases", QueryFormat.KEYWORD.value),
        ("keywords", QueryFormat.KEYWORD.value),
        ("questions", QueryFormat.NATURAL_LANGUAGE.value),
        (None, QueryFormat.NATURAL_LANGUAGE.value),
    ])
    def test_query_format(self, value, expected):
        assert coerce_query_format(value) == expected

    @pytest.mark.parametrize("value", [
        "", " ", "x", "education", "a completely unrelated sentence", "📈", "Service", "Industry",
    ])
    def test_outputs_stay_inside_enums(self, value):
        assert coerce_query_type(value) in VALID_QUERY_TYPES
        assert coerce_query_category(value) in VALID_QUERY_CATEGORIES


@pytest.mark.unit
@pytest.mark.fast
class TestSanitizeAnalysis:

    def test_fenced_sample_with_bad_fields(self):
        raw = '```json\n{"brand_mentions": "Acme, , Globex", "source": "", "query_type": "bogus", "query_category": "foo"}\n```'

        result = sanitize_analysis(raw)

        assert result.brand_mentions == ["Acme", "Globex"]
        assert result.source == UNKNOWN_SOURCE
        assert result.query_type == QueryType.EDUCATIONAL
        assert result.query_category == "Industry monitoring"

    def test_well_formed_response(self, analysis_payload):
        result = sanitize_analysis(analysis_payload)

        assert result.brand_mentions == ["HubSpot", "Salesforce"]
        assert result.source == "Review sites"
        assert result.query_type == QueryType.SERVICE_ALIGNED
        assert result.query_category == "Competitor benchmarking"

    def test_brand_list_trimmed_and_capped(self):
        brands = [f"  Brand{n} " for n in range(30)] + ["", "   "]
        result = sanitize_analysis({"brand_mentions": brands})

        assert len(result.brand_mentions) == 20
        assert result.brand_mentions[0] == "Brand0"

    def test_empty_brands_get_sentinel(self):
        assert sanitize_analysis({"brand_mentions": []}).brand_mentions == [NO_BRANDS_IDENTIFIED]
        assert sanitize_analysis({"brand_mentions": " , "}).brand_mentions == [NO_BRANDS_IDENTIFIED]

    def test_source_truncated(self):
        result = sanitize_analysis({"source": "x" * 900})
        assert len(result.source) == 500

    def test_invalid_json_text_raises(self):
        with pytest.raises(ResponseParseError):
            sanitize_analysis("I could not analyze this query, sorry.")

    def test_single_element_array_is_unwrapped(self):
        result = sanitize_analysis('[{"source": "Forums"}]')
        assert result.source == "Forums"

    @pytest.mark.parametrize("raw", [
        {},
        {"brand_mentions": None, "source": None, "query_type": None, "query_category": None},
        {"brand_mentions": 17, "source": ["a"], "query_type": 3, "query_category": {}},
        {"brand_mentions": [None, 5, ""], "source": "   "},
        [],
        "{}",
        "[]",
        '{"brand_mentions": [], "source": ""}',
    ])
    def test_malformed_input_is_fully_populated(self, raw):
        result = sanitize_analysis(raw)

        assert has_minimum_fields(result)
        assert all(b for b in result.brand_mentions)
        assert result.source
        assert result.query_type.value in VALID_QUERY_TYPES
        assert result.query_category in VALID_QUERY_CATEGORIES

    @pytest.mark.parametrize("raw", [
        '```json\n{"brand_mentions": "Acme, , Globex", "source": "", "query_type": "bogus", "query_category": "foo"}\n```',
        {"brand_mentions": ["A", "B"], "source": "  Docs  ", "query_type": "service", "query_category": "trend"},
        {"source": "y" * 499 + " " + "z" * 50},
        {"brand_mentions": ["Stack Overflow"], "source": "Stack Overflow answers with ```json snippets"},
        {},
    ])
    def test_sanitization_is_idempotent(self, raw):
        first = sanitize_analysis(raw)
        second = sanitize_analysis(first.model_dump_json())
        assert second == first


@pytest.mark.unit
@pytest.mark.fast
class TestSanitizeGeneratedQueries:

    def test_fuzzy_service_aligned_sample(self):
        record = sanitize_generated_query({"query_text": "What is AEO?", "query_type": "service aligned query"})

        assert record is not None
        assert record.query_type == QueryType.SERVICE_ALIGNED
        assert record.query_text == "What is AEO?"
        assert record.query_category == "Industry monitoring"
        assert record.query_format == QueryFormat.NATURAL_LANGUAGE
        assert record.target_audience == "General audience"

    @pytest.mark.parametrize("raw", [
        {},
        {"query_text": ""},
        {"query_text": "   "},
        {"query_text": 12},
        "What is AEO?",
        None,
    ])
    def test_rejects_missing_text(self, raw):
        assert sanitize_generated_query(raw) is None

    def test_batch_drops_invalid_items_and_numbers_survivors(self, generated_payload_factory):
        items = json.loads(generated_payload_factory(3))
        items.insert(1, {"query_type": "Educational"})

        records = sanitize_generated_queries(items)

        assert len(records) == 3
        assert [r.query_id for r in records] == [1, 2, 3]

    def test_batch_accepts_fenced_text(self, generated_payload_factory):
        raw = "```json\n" + generated_payload_factory(5) + "\n```"
        assert len(sanitize_generated_queries(raw)) == 5

    def test_batch_accepts_queries_wrapper(self, generated_payload_factory):
        raw = json.dumps({"queries": json.loads(generated_payload_factory(4))})
        assert len(sanitize_generated_queries(raw)) == 4

    def test_batch_with_no_survivors_raises(self):
        with pytest.raises(ResponseValidationError) as exc_info:
            sanitize_generated_queries('[{"query_type": "Educational"}, {"query_text": ""}]')
        assert "validation" in str(exc_info.value).lower()

    def test_batch_that_is_not_a_list_raises(self):
        with pytest.raises(ResponseValidationError):
            sanitize_generated_queries('{"status": "ok"}')

    def test_batch_invalid_json_raises_parse_error(self):
        with pytest.raises(ResponseParseError):
            sanitize_generated_queries("[{broken")


@pytest.mark.unit
@pytest.mark.fast
class TestFallbackAndErrors:

    def test_fallback_keeps_query_classification(self, sample_queries):
        query = sample_queries[0].model_copy(update={"query_type": "Service-Aligned", "query_category": "Trend explanation"})

        fallback = generate_fallback_result(query)

        assert fallback.brand_mentions == [FALLBACK_BRAND_MENTION]
        assert fallback.source == FALLBACK_SOURCE
        assert fallback.query_type == QueryType.SERVICE_ALIGNED
        assert fallback.query_category == "Trend explanation"

    def test_fallback_coerces_bad_classification(self):
        fallback = generate_fallback_result({"query_type": "???", "query_category": None})

        assert fallback.query_type == QueryType.EDUCATIONAL
        assert fallback.query_category == "Industry monitoring"
        assert has_minimum_fields(fallback)

    def test_error_message_capped(self):
        assert len(sanitize_error_message(RuntimeError("e" * 2000))) == 500

    def test_empty_error_message_uses_type_name(self):
        import asyncio
        assert sanitize_error_message(asyncio.TimeoutError()) == "TimeoutError"

    def test_unprintable_error_uses_type_name(self):
        class UnprintableError(Exception):
            def __str__(self):
                raise RuntimeError("cannot render")

        assert sanitize_error_message(UnprintableError()) == "UnprintableError"
