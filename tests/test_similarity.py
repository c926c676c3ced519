"""
Tests for string normalisation and fuzzy matching
"""

import pytest

from gradescan.services.similarity import (
    is_valid_class_name,
    is_valid_name,
    levenshtein_distance,
    match_labels,
    names_similar,
    normalize_class_name,
    normalize_name,
    normalize_subject,
    parse_full_name,
    similarity_ratio,
    split_full_name,
    suggest_class_from_text,
)


WORDS = ["", "a", "math", "Mathématiques", "kitten", "sitting", "Histoire-Géo", "Dupont"]


class TestEditDistance:

    @pytest.mark.parametrize("a", WORDS)
    @pytest.mark.parametrize("b", WORDS)
    def test_symmetric(self, a, b):
        assert levenshtein_distance(a, b) == levenshtein_distance(b, a)

    @pytest.mark.parametrize("a", WORDS)
    def test_identity(self, a):
        assert levenshtein_distance(a, a) == 0

    def test_known_distance(self):
        assert levenshtein_distance("kitten", "sitting") == 3
        assert levenshtein_distance("", "abc") == 3

    def test_similarity_ratio(self):
        assert similarity_ratio("dupont", "dupont") == 1
        assert similarity_ratio("", "dupont") == 0
        assert similarity_ratio("dupont", "dupond") == pytest.approx(5 / 6)


class TestNames:

    def test_normalize_name(self):
        assert normalize_name("  jean-PIERRE   d'arc ") == "Jean-pierre D'arc"
        assert normalize_name(None) == ""

    def test_is_valid_name(self):
        assert is_valid_name("Éloïse")
        assert is_valid_name("O'Neil")
        assert not is_valid_name("J")
        assert not is_valid_name("Jean2")
        assert not is_valid_name("x" * 51)

    def test_parse_full_name_surname_first(self):
        assert parse_full_name("DUPONT Jean") == {"first_name": "Jean", "last_name": "Dupont"}

    def test_parse_full_name_labelled(self):
        assert parse_full_name("Nom: Martin Prénom: Marie") == {"first_name": "Marie", "last_name": "Martin"}

    def test_parse_full_name_plain(self):
        assert parse_full_name("marie curie") == {"first_name": "Marie", "last_name": "Curie"}

    def test_split_full_name(self):
        assert split_full_name("Jean Pierre Dupont") == ("Jean Pierre", "Dupont")
        assert split_full_name("Madonna") == ("Madonna", "Madonna")
        assert split_full_name("") == ("", "")

    def test_swapped_names_are_similar(self):
        a = {"first_name": "Jean", "last_name": "Dupont"}
        b = {"firstName": "DUPONT", "lastName": "Jean"}
        assert names_similar(a, b)
        assert names_similar(b, a)

    def test_close_spelling_is_similar(self):
        a = {"first_name": "Mathilde", "last_name": "Dupontel"}
        b = {"first_name": "Mathilda", "last_name": "Dupontell"}
        assert names_similar(a, b) == names_similar(b, a) is True

    def test_different_people(self):
        a = {"first_name": "Jean", "last_name": "Dupont"}
        b = {"first_name": "Marie", "last_name": "Martin"}
        assert not names_similar(a, b)
        assert not names_similar(b, a)


class TestClassesAndSubjects:

    def test_normalize_class_name(self):
        assert normalize_class_name(" 6ème   a! ") == "6ÈME A"

    def test_class_validity(self):
        assert is_valid_class_name("CM2")
        assert not is_valid_class_name("")
        assert not is_valid_class_name("x" * 21)

    def test_suggest_class_from_text(self):
        assert suggest_class_from_text("Bulletin - Classe: 6A") == "6A"
        assert suggest_class_from_text("élève de CM2") == "CM2"
        assert suggest_class_from_text("rien") == ""

    def test_normalize_subject(self):
        assert normalize_subject("maths") == "Mathématiques"
        assert normalize_subject(" HG ") == "Histoire-Géographie"
        assert normalize_subject("histoire-geo") == "Histoire-Géographie"
        assert normalize_subject("Technologie") == "Technologie"

    def test_match_labels(self):
        matches = match_labels("math", ["Mathématiques", "math", "Musique"])
        assert ("Mathématiques", 0.9, "containment") in matches
        # exact match after normalisation needs no suggestion
        assert all(candidate != "math" for candidate, _, _ in matches)

    def test_match_labels_distance(self):
        matches = match_labels("Francais", ["Français"])
        assert matches == [("Français", pytest.approx(7 / 8), "distance")]
