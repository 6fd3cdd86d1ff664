"""
Tests for caller-input heuristics (dialogue.signals).
"""

import pytest

from dialogue.signals import (
    extract_name,
    extract_phone,
    format_phone,
    is_goodbye,
    is_negative,
    normalize_phone_key,
    reprompt_for,
    validate_input,
    words_to_digits,
)
from dialogue.stages import Stage


class TestGoodbye:
    @pytest.mark.parametrize("stage", [Stage.GET_NAME, Stage.GET_PHONE, Stage.GET_REASON, Stage.FOLLOW_UP])
    def test_explicit_goodbye_counts_at_every_stage(self, stage):
        assert is_goodbye("Actually never mind, goodbye", stage) is True
        assert is_goodbye("Sorry, gotta go", stage) is True

    def test_bare_bye(self):
        assert is_goodbye("Bye", Stage.GET_NAME) is True
        assert is_goodbye("okay bye", Stage.GET_PHONE) is True

    def test_soft_closings_only_after_data_collection(self):
        assert is_goodbye("that's all", Stage.GET_PHONE) is False
        assert is_goodbye("that's all", Stage.FOLLOW_UP) is True
        assert is_goodbye("No thanks", Stage.FOLLOW_UP) is True

    def test_word_boundaries(self):
        assert is_goodbye("I'd like to buy a new toothbrush", Stage.FOLLOW_UP) is False
        assert is_goodbye("My name is Abby", Stage.GET_NAME) is False

    def test_empty(self):
        assert is_goodbye("", Stage.GET_NAME) is False

    def test_hang_up_is_not_a_goodbye(self):
        assert is_goodbye("please don't hang up yet", Stage.GET_NAME) is False


class TestNegative:
    @pytest.mark.parametrize("text", ["No", "Nope, I'm good", "Not really", "nothing else", "No that's it"])
    def test_negative(self, text):
        assert is_negative(text) is True

    @pytest.mark.parametrize("text", [
        "No, what time do you close?",
        "Do you take walk-ins?",
        "Yes, one more question about parking",
        "No what about pricing",
        "no is there parking",
        "nope do you take walk-ins",
        "",
    ])
    def test_not_negative(self, text):
        assert is_negative(text) is False


class TestValidateInput:
    def test_name_rejects_filler_and_questions(self):
        assert validate_input("um", Stage.GET_NAME) == (False, "filler")
        assert validate_input("a", Stage.GET_NAME) == (False, "too_short")
        assert validate_input("What are your hours?", Stage.GET_NAME) == (False, "question")
        assert validate_input("I need to book a cleaning", Stage.GET_NAME) == (False, "question")

    def test_name_accepts_names(self):
        assert validate_input("This is Sarah Jones", Stage.GET_NAME) == (True, None)
        assert validate_input("Will Smith", Stage.GET_NAME) == (True, None)

    def test_phone(self):
        assert validate_input("555 123 4567", Stage.GET_PHONE) == (True, None)
        assert validate_input("five five five one two three four", Stage.GET_PHONE) == (True, None)
        assert validate_input("555", Stage.GET_PHONE) == (False, "too_short")
        assert validate_input("I don't have a phone", Stage.GET_PHONE) == (False, "no_phone")

    def test_phone_digits_beat_refusal_words(self):
        assert validate_input("not sure, maybe 555 123 4567", Stage.GET_PHONE) == (True, None)

    def test_reason(self):
        assert validate_input("yeah", Stage.GET_REASON) == (False, "filler")
        assert validate_input("tooth", Stage.GET_REASON) == (True, None)
        assert validate_input("ow", Stage.GET_REASON) == (False, "too_short")
        assert validate_input("I'd like a cleaning", Stage.GET_REASON) == (True, None)

    def test_reprompts(self):
        assert reprompt_for(Stage.GET_NAME, "question").startswith("I'd be happy to help with that!")
        assert "your name" in reprompt_for(Stage.GET_NAME, "filler")
        assert "phone number" in reprompt_for(Stage.GET_PHONE, "too_short")
        assert "why you're calling" in reprompt_for(Stage.GET_REASON, "too_short")


class TestExtractName:
    @pytest.mark.parametrize("text,expected", [
        ("My name is Sarah Jones", "Sarah Jones"),
        ("Hi, this is sarah", "Sarah"),
        ("I'm Mike and I need a cleaning", "Mike"),
        ("call me bob", "Bob"),
        ("Jennifer, calling about my appointment", "Jennifer"),
        ("Dave here", "Dave"),
        ("Hello, John here", "John"),
        ("Hi there, this is John", "John"),
        ("Um, my name is John", "John"),
        ("Uh my name is John Smith", "John Smith"),
        ("yeah it's Maria speaking", "Maria"),
    ])
    def test_extracts(self, text, expected):
        assert extract_name(text) == expected

    @pytest.mark.parametrize("text", ["my name is", "Hello", "um", "Hi there"])
    def test_nothing_left(self, text):
        assert extract_name(text) is None


class TestPhone:
    def test_words_to_digits(self):
        assert words_to_digits("five five five oh one two three") == "5550123"

    def test_extract_digits_to_e164(self):
        assert extract_phone("It's 555-123-4567") == "+15551234567"

    def test_extract_spoken_digits(self):
        assert extract_phone("five five five one two three four five six seven") == "+15551234567"

    def test_local_number_stays_digits(self):
        assert extract_phone("555-1234") == "5551234"

    def test_extract_too_short(self):
        assert extract_phone("extension 42") is None

    def test_normalize_key(self):
        assert normalize_phone_key("+1 (555) 123-4567") == "5551234567"
        assert normalize_phone_key("555.123.4567") == "5551234567"
        assert normalize_phone_key(None) is None

    def test_format_phone(self):
        assert format_phone("+15551234567") == "(555) 123-4567"
        assert format_phone("5551234") == "5551234"
        assert format_phone(None) == "Not provided"
