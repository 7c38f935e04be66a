"""Tests for natural-language intent resolution."""

from mcp_lookup.intent import resolve_intent, similar_intents, tokenize


class TestResolveIntent:
    def test_phrase_maps_to_tag_and_aliases(self):
        resolution = resolve_intent("I need to send email to my team")
        assert resolution.tags[:4] == ["email_send", "email", "email_compose", "messaging"]
        assert resolution.from_lexicon
        assert resolution.keywords == []

    def test_multiple_phrases_merge_without_duplicates(self):
        resolution = resolve_intent("check email and schedule meeting")
        assert "email_read" in resolution.tags
        assert "calendar_create" in resolution.tags
        assert resolution.tags.count("email") == 1

    def test_punctuation_and_case_ignored(self):
        assert "db_query" in resolve_intent("Query-Database, please!").tags

    def test_falls_back_to_keywords(self):
        resolution = resolve_intent("weather forecast for Paris")
        assert resolution.tags == []
        assert not resolution.from_lexicon
        assert resolution.keywords == ["weather", "forecast", "paris"]


class TestHelpers:
    def test_tokenize_drops_stopwords_and_duplicates(self):
        assert tokenize("find me a server that can translate translate text") == [
            "translate",
            "text",
        ]

    def test_similar_intents_suggests_lexicon_phrases(self):
        suggestions = similar_intents("email my boss")
        assert suggestions
        assert all("email" in s for s in suggestions)
        assert len(suggestions) <= 3

    def test_similar_intents_empty_for_stopwords(self):
        assert similar_intents("the a of") == []
