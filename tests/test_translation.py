import pytest

import translation


class FakeTranslator:
    calls = []

    def __init__(self, source, target):
        self.source = source
        self.target = target

    def translate(self, text):
        FakeTranslator.calls.append((self.target, text))
        return f"[{self.target}] {text}"


class BrokenTranslator(FakeTranslator):
    def translate(self, text):
        raise ConnectionError("translator unreachable")


@pytest.fixture
def translator(monkeypatch):
    FakeTranslator.calls = []
    monkeypatch.setattr(translation, "GoogleTranslator", FakeTranslator)
    return FakeTranslator


@pytest.mark.parametrize("lang,target", [("es", "es"), ("es-ES", "es"), ("pt-BR", "pt"), ("fr", "es")])
def test_translate_text_maps_target(translator, lang, target):
    assert translation.translate_text("Great movie", lang) == f"[{target}] Great movie"
    assert translator.calls == [(target, "Great movie")]


def test_english_and_empty_text_skip_the_translator(translator):
    assert translation.translate_text("Great movie", "en") == "Great movie"
    assert translation.translate_text("Great movie", "en-US") == "Great movie"
    assert translation.translate_text("", "es") == ""
    assert translator.calls == []


def test_failure_returns_original_text(monkeypatch):
    monkeypatch.setattr(translation, "GoogleTranslator", BrokenTranslator)
    assert translation.translate_text("Great movie", "pt") == "Great movie"


def test_translate_fields_only_touches_named_strings(translator):
    original = {"comment": "Loved it", "bio": "Film nerd", "rating": 9, "title": ""}
    result = translation.translate_fields(original, ["comment", "rating", "title", "missing"], "pt")
    assert result == {"comment": "[pt] Loved it", "bio": "Film nerd", "rating": 9, "title": ""}
    assert original["comment"] == "Loved it"


def test_translate_fields_english_is_identity(translator):
    original = {"comment": "Loved it"}
    assert translation.translate_fields(original, ["comment"], "en") is original
    assert translator.calls == []


def test_translate_route(client, translator):
    resp = client.post("/api/translate", json={"text": "Great movie", "targetLang": "pt"})
    assert resp.status_code == 200
    assert resp.json() == {"translatedText": "[pt] Great movie"}


def test_translate_route_defaults_to_spanish(client, translator):
    assert client.post("/api/translate", json={"text": "Great movie"}).json() == {"translatedText": "[es] Great movie"}


def test_translate_route_requires_text(client, translator):
    resp = client.post("/api/translate", json={"targetLang": "es"})
    assert resp.status_code == 400
    assert resp.json() == {"message": "Text is required"}


def test_translate_route_falls_back_on_failure(client, monkeypatch):
    monkeypatch.setattr(translation, "GoogleTranslator", BrokenTranslator)
    resp = client.post("/api/translate", json={"text": "Great movie", "targetLang": "es"})
    assert resp.status_code == 200
    assert resp.json() == {"translatedText": "Great movie"}


def test_translate_fields_route(client, translator):
    resp = client.post(
        "/api/translate/fields",
        json={"object": {"comment": "Loved it", "movieId": 550}, "fields": ["comment"], "targetLang": "es"},
    )
    assert resp.status_code == 200
    assert resp.json() == {"comment": "[es] Loved it", "movieId": 550}


def test_translate_fields_route_requires_object_and_fields(client, translator):
    resp = client.post("/api/translate/fields", json={"fields": ["comment"]})
    assert resp.status_code == 400
    assert resp.json() == {"message": "Object and fields are required"}
    assert client.post("/api/translate/fields", json={"object": {"a": "b"}}).status_code == 400
