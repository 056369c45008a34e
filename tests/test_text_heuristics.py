"""Tests for proper-noun protection and script-based language classification."""

from hypothesis import given, settings, strategies as st

from video_translator.services.text_heuristics import (
    HeuristicProperNounDetector,
    ProtectedText,
    Strictness,
    UnicodeScriptClassifier,
    is_sentence_start,
    protect,
    restore,
)


class TestProperNounDetector:
    """Capitalization heuristics at each strictness level."""

    def setup_method(self):
        self.detector = HeuristicProperNounDetector(Strictness.BALANCED)

    def test_mid_sentence_names_are_found(self):
        found = self.detector.find("Yesterday we met Priya and Rahul in Chennai.")

        assert found == ["Priya", "Rahul", "Chennai"]

    def test_common_words_and_sentence_starts_are_ignored(self):
        found = self.detector.find("The meeting is over. Thanks to everyone. Hello There")

        assert found == []

    def test_acronyms_and_compounds_are_always_protected(self):
        found = self.detector.find("NASA engineers use iPhone apps and YouTube daily.")

        assert found == ["NASA", "iPhone", "YouTube"]

    def test_lenient_protects_sentence_initial_names(self):
        lenient = HeuristicProperNounDetector(Strictness.LENIENT)

        assert lenient.find("Mumbai is large. Delhi too.") == ["Mumbai", "Delhi"]
        assert self.detector.find("Mumbai is large. Delhi too.") == []

    def test_strict_requires_three_letters(self):
        strict = HeuristicProperNounDetector("strict")

        assert strict.find("We met Al and Maria.") == ["Maria"]
        assert self.detector.find("We met Al and Maria.") == ["Al", "Maria"]

    def test_count_signals_counts_mid_sentence_capitals(self):
        assert self.detector.count_signals("We met Priya in Chennai with John.") == 3
        assert self.detector.count_signals("we met priya in chennai.") == 0

    def test_sentence_start_detection(self):
        text = 'He said. "Anna left"'
        assert is_sentence_start(text, 0)
        assert is_sentence_start(text, text.index("Anna"))
        assert not is_sentence_start(text, text.index("said"))


class TestMarkerRoundTrip:
    """Markers survive translation and are restored to the surface form."""

    def setup_method(self):
        self.detector = HeuristicProperNounDetector()

    def test_protect_replaces_tokens_with_markers(self):
        protected = protect("We visited Google in London.", self.detector)

        assert protected.text == "We visited [[PN0]] in [[PN1]]."
        assert protected.tokens == ["Google", "London"]

    def test_restore_tolerates_spacing_and_case(self):
        protected = ProtectedText(text="", tokens=["Google", "London"])

        restored = restore("Nous avons visité [[ pn0 ]] à [PN1].", protected)

        assert restored == "Nous avons visité Google à London."

    def test_unknown_marker_is_removed(self):
        protected = ProtectedText(text="", tokens=["Google"])

        assert restore("[[PN0]] et [[PN7]]", protected) == "Google et "

    def test_dropped_marker_is_logged(self, caplog):
        protected = ProtectedText(text="", tokens=["Google", "London"])

        with caplog.at_level("WARNING"):
            restored = restore("only [[PN0]] here", protected)

        assert restored == "only Google here"
        assert "London" in caplog.text

    @given(
        names=st.lists(
            st.sampled_from(["Priya", "Chennai", "NASA", "YouTube", "Berlin", "Okonkwo"]),
            min_size=1, max_size=6
        )
    )
    @settings(max_examples=100, deadline=None)
    def test_round_trip_restores_every_token(self, names):
        text = "we saw " + " and ".join(names) + " today."
        protected = protect(text, self.detector)

        # Stand-in translation that only changes unprotected text
        translated = protected.text.replace("we saw", "WE SAW")
        restored = restore(translated, protected)

        for name in names:
            assert name in restored
        assert "[[PN" not in restored


class TestUnicodeScriptClassifier:
    """Script-block language classification."""

    def setup_method(self):
        self.classifier = UnicodeScriptClassifier()

    def test_indic_scripts(self):
        assert self.classifier.classify("नमस्ते दुनिया") == "hi"
        assert self.classifier.classify("வணக்கம் உலகம்") == "ta"
        assert self.classifier.classify("హలో ప్రపంచం") == "te"
        assert self.classifier.classify("ನಮಸ್ಕಾರ") == "kn"
        assert self.classifier.classify("നമസ്കാരം") == "ml"
        assert self.classifier.classify("হ্যালো বিশ্ব") == "bn"
        assert self.classifier.classify("નમસ્તે") == "gu"
        assert self.classifier.classify("ਸਤ ਸ੍ਰੀ ਅਕਾਲ") == "pa"

    def test_east_asian_scripts(self):
        assert self.classifier.classify("你好世界") == "zh"
        assert self.classifier.classify("안녕하세요") == "ko"
        assert self.classifier.classify("こんにちは世界") == "ja"

    def test_arabic_versus_urdu(self):
        assert self.classifier.classify("مرحبا بالعالم") == "ar"
        assert self.classifier.classify("یہ ایک کتاب ہے") == "ur"

    def test_english_function_words(self):
        assert self.classifier.classify("This is what they said about the plan") == "en"

    def test_unknown_returns_none(self):
        assert self.classifier.classify("Hola amigos") is None
        assert self.classifier.classify("   ") is None
