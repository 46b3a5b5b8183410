"""Tests for digest_anki/provider.py and item validation in digest_anki/models.py."""

import json
from unittest.mock import MagicMock

import pytest

from digest_anki.llm_backends import LLMBackend, LLMConfig, LLMResponse
from digest_anki.models import card_draft_from_item
from digest_anki.prompts import output_token_budget, response_schema
from digest_anki.provider import (
    LLMEnrichmentProvider,
    NoopEnrichmentProvider,
    ProviderError,
    ProviderTimeoutError,
    TruncatedOutputError,
)


def item(word, **overrides):
    data = {
        "Word": word,
        "CanonicalAnswer": "to faint",
        "CanonicalAnswerAlt": None,
        "PartOfSpeech": "verb",
        "Definition": "to lose consciousness briefly",
        "ExampleSentence": "He nearly fainted in the heat.",
        "SourceTitle": "Book.epub",
        "Hint": "s____",
    }
    data.update(overrides)
    return data


def backend_returning(response):
    backend = MagicMock(spec=LLMBackend)
    backend.name = "fake"
    backend.generate.return_value = response
    return backend


class TestCardDraftFromItem:
    """Tests for provider item validation."""

    def test_valid_item(self):
        """A complete item becomes a draft with lowercased part of speech."""
        draft = card_draft_from_item(item("swoon", PartOfSpeech="Verb"))
        assert draft.word == "swoon"
        assert draft.part_of_speech == "verb"
        assert draft.canonical_answer_alt is None

    def test_snake_case_keys(self):
        """snake_case keys are accepted too."""
        draft = card_draft_from_item(
            {
                "word": "swoon",
                "canonical_answer": "to faint",
                "part_of_speech": "verb",
                "definition": "lose consciousness",
                "example_sentence": "He nearly did.",
                "source_title": "Book.epub",
                "hint": "s____",
            }
        )
        assert draft is not None
        assert draft.definition == "lose consciousness"

    @pytest.mark.parametrize("field", ["Word", "CanonicalAnswer", "Definition", "Hint", "PartOfSpeech"])
    def test_missing_required_field(self, field):
        """Missing required fields reject the item."""
        data = item("swoon")
        del data[field]
        assert card_draft_from_item(data) is None

    def test_blank_required_field(self):
        """Whitespace-only values count as missing."""
        assert card_draft_from_item(item("swoon", Definition="   ")) is None

    def test_invalid_part_of_speech(self):
        """Parts of speech outside the closed set are rejected."""
        assert card_draft_from_item(item("swoon", PartOfSpeech="gerund")) is None

    def test_not_a_mapping(self):
        """Non-dict items are rejected."""
        assert card_draft_from_item("swoon") is None
        assert card_draft_from_item(None) is None


class TestNoopProvider:
    def test_returns_nothing(self):
        """The disabled provider yields no drafts."""
        assert NoopEnrichmentProvider().enrich(["a"], "S") == []


class TestLLMEnrichmentProvider:
    """Tests for LLMEnrichmentProvider."""

    def test_parses_items(self):
        """Valid items become drafts tied to the requested source."""
        payload = {"items": [item("swoon"), item("gloaming", PartOfSpeech="noun")]}
        backend = backend_returning(LLMResponse(raw_text=json.dumps(payload)))
        provider = LLMEnrichmentProvider(backend)

        drafts = provider.enrich(["swoon", "gloaming"], "Book.epub")

        assert [d.word for d in drafts] == ["swoon", "gloaming"]
        assert all(d.source_title == "Book.epub" for d in drafts)

    def test_prompt_and_token_budget(self):
        """The call carries the system prompt and a per-batch output budget."""
        backend = backend_returning(LLMResponse(raw_text='{"items": []}'))
        provider = LLMEnrichmentProvider(backend, LLMConfig(model="m"))

        provider.enrich(["a", "b", "c"], "Book.epub")

        args, kwargs = backend.generate.call_args
        prompt, config = args
        assert '"Book.epub"' in prompt
        assert '["a", "b", "c"]' in prompt
        assert "Contract" in kwargs["system_prompt"]
        assert config.model == "m"
        assert config.max_output_tokens == output_token_budget(3)
        assert provider.config.max_output_tokens is None
        assert config.output_schema == response_schema()

    def test_malformed_items_dropped(self):
        """Invalid or unrequested items are filtered out silently."""
        payload = {
            "items": [
                item("swoon"),
                item("gloaming", PartOfSpeech="gerund"),
                item("intruder"),
                "not an item",
                item("swoon"),
            ]
        }
        backend = backend_returning(LLMResponse(raw_text=json.dumps(payload)))
        drafts = LLMEnrichmentProvider(backend).enrich(["swoon", "gloaming"], "Book.epub")
        assert [d.word for d in drafts] == ["swoon"]

    def test_case_variants_kept_apart(self):
        """"Swoon" and "swoon" in one batch each keep their own draft."""
        payload = {"items": [item("swoon", Hint="lower"), item("Swoon", Hint="upper")]}
        backend = backend_returning(LLMResponse(raw_text=json.dumps(payload)))
        drafts = LLMEnrichmentProvider(backend).enrich(["Swoon", "swoon"], "Book.epub")
        assert {d.word: d.hint for d in drafts} == {"swoon": "lower", "Swoon": "upper"}

    def test_ambiguous_case_match_dropped(self):
        """A spelling matching neither variant exactly is not guessed."""
        payload = {"items": [item("SWOON")]}
        backend = backend_returning(LLMResponse(raw_text=json.dumps(payload)))
        assert LLMEnrichmentProvider(backend).enrich(["Swoon", "swoon"], "Book.epub") == []

    def test_source_title_forced(self):
        """Drafts always carry the requested source title and word spelling."""
        payload = {"items": [item("Swoon", SourceTitle="Something Else")]}
        backend = backend_returning(LLMResponse(raw_text=json.dumps(payload)))
        drafts = LLMEnrichmentProvider(backend).enrich(["swoon"], "Book.epub")
        assert drafts[0].word == "swoon"
        assert drafts[0].source_title == "Book.epub"

    def test_fenced_response(self):
        """JSON inside markdown fences is still parsed."""
        raw = "```json\n" + json.dumps({"items": [item("swoon")]}) + "\n```"
        backend = backend_returning(LLMResponse(raw_text=raw))
        assert len(LLMEnrichmentProvider(backend).enrich(["swoon"], "Book.epub")) == 1

    def test_unparseable_response_is_empty(self):
        """Garbage output yields zero drafts, not an error."""
        backend = backend_returning(LLMResponse(raw_text="I cannot help with that."))
        assert LLMEnrichmentProvider(backend).enrich(["swoon"], "Book.epub") == []

    def test_missing_items_key_is_empty(self):
        """A JSON object without an items list yields zero drafts."""
        backend = backend_returning(LLMResponse(raw_text='{"cards": []}'))
        assert LLMEnrichmentProvider(backend).enrich(["swoon"], "Book.epub") == []

    def test_truncated_raises_truncated_error(self):
        """Truncated responses raise the dedicated, non-provider error."""
        backend = backend_returning(LLMResponse(raw_text='{"items": [', truncated=True))
        with pytest.raises(TruncatedOutputError) as exc:
            LLMEnrichmentProvider(backend).enrich(["a", "b"], "S")
        assert exc.value.word_count == 2
        assert not isinstance(exc.value, ProviderError)

    def test_timeout_raises(self):
        """Timeouts are provider errors of their own kind."""
        backend = backend_returning(
            LLMResponse(raw_text="", success=False, timed_out=True, error_message="Timeout")
        )
        with pytest.raises(ProviderTimeoutError):
            LLMEnrichmentProvider(backend).enrich(["a"], "S")

    def test_failure_raises(self):
        """Other backend failures raise ProviderError."""
        backend = backend_returning(
            LLMResponse(raw_text="", success=False, error_message="quota exceeded")
        )
        with pytest.raises(ProviderError, match="quota exceeded"):
            LLMEnrichmentProvider(backend).enrich(["a"], "S")

    def test_empty_words_skip_call(self):
        """No words, no backend call."""
        backend = backend_returning(LLMResponse(raw_text="{}"))
        assert LLMEnrichmentProvider(backend).enrich([], "S") == []
        backend.generate.assert_not_called()

    def test_artifacts_written(self, tmp_path):
        """With a run dir, the parsed response is saved per call."""
        backend = backend_returning(LLMResponse(raw_text=json.dumps({"items": [item("swoon")]})))
        provider = LLMEnrichmentProvider(backend, run_dir=tmp_path)
        provider.enrich(["swoon"], "Book.epub")
        provider.enrich(["swoon"], "Book.epub")
        assert (tmp_path / "parsed_response_call_001.json").exists()
        assert (tmp_path / "parsed_response_call_002.json").exists()
