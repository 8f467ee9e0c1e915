"""
Tests for the Field Recognizer Node

- Ordered strategy cascades per field
- Date, price, period, address and name heuristics
- Known failure modes (earliest-date acceptance, year read as price)
"""

import pytest
from datetime import date

from state import OFFER_FIELDS, MAX_FIELD_LENGTH
from nodes.recognizer import (
    RecognitionConfidence,
    FIELD_STRATEGIES,
    build_document_view,
    dollar_amount,
    clean_name_candidate,
    collect_contract_dates,
    parse_dates,
    recognize_fields,
    recognize_fields_with_trace,
    field_recognizer_node,
)


# ============================================================================
# Test Fixtures - Sample Purchase Agreements
# ============================================================================

@pytest.fixture
def sample_purchase_agreement():
    """Purchase agreement with labels on their own lines and inline."""
    return """
    RESIDENTIAL PURCHASE AGREEMENT

    Acceptance Date
    03/01/2024

    BUYER: John Michael Smith
    Email: john.smith@gmail.com
    Phone: (555) 234-5678

    SELLER: Robert William Johnson
    Email: rjohnson@coldwellbanker.com

    PROPERTY ADDRESS: 456 Oak Avenue, Unit 7, Springfield, CA 92101

    PURCHASE PRICE: $750,000.00
    EARNEST MONEY DEPOSIT: $15,000.00

    Inspection Period: 10 days from acceptance
    Appraisal must be completed within 21 days
    Financing contingency: 30 days

    Closing Date
    04/15/2024
    """


@pytest.fixture
def signature_page():
    """Contract whose names only appear under the signature lines."""
    return """
    ADDENDUM TO PURCHASE AGREEMENT
    Property: 789 Pine Street, Lakewood, CA 90001
    The parties agree to extend the closing date.

    Buyer Signature ________________ Date ________
    Alice Walker

    Seller Signature ________________ Date ________
    Bob Turner
    """


# ============================================================================
# Document View Tests
# ============================================================================

class TestBuildDocumentView:
    """Tests for the line and whole-text views."""

    def test_lines_trimmed_and_blank_lines_dropped(self):
        view = build_document_view("  first \n\n\t second\t\r\n   \n")
        assert view.lines == ("first", "second")

    def test_whole_text_collapses_whitespace(self):
        view = build_document_view("a \n\n  b\tc")
        assert view.whole == "a b c"

    def test_none_is_empty(self):
        view = build_document_view(None)
        assert view.lines == ()
        assert view.whole == ""


# ============================================================================
# Full Document Tests
# ============================================================================

class TestRecognizeFields:
    """End-to-end recognition over sample contracts."""

    def test_full_agreement(self, sample_purchase_agreement):
        fields = recognize_fields(sample_purchase_agreement)
        assert fields == {
            "acceptance_date": "2024-03-01",
            "closing_date": "2024-04-15",
            "inspection_period": "10",
            "appraisal_period": "21",
            "financing_deadline": "30",
            "property_address": "456 Oak Avenue, Unit 7, Springfield, CA 92101",
            "buyer_name": "John Michael Smith",
            "seller_name": "Robert William Johnson",
            "sale_price": "$750,000.00",
        }

    def test_always_returns_every_key(self):
        fields = recognize_fields("nothing useful here")
        assert set(fields) == set(OFFER_FIELDS)
        assert all(value == "" for value in fields.values())

    def test_none_and_empty_text(self):
        """None is treated like empty text."""
        assert recognize_fields(None) == recognize_fields("")
        assert all(value == "" for value in recognize_fields(None).values())

    def test_deterministic(self, sample_purchase_agreement):
        first = recognize_fields(sample_purchase_agreement)
        second = recognize_fields(sample_purchase_agreement)
        assert first == second

    def test_every_field_has_strategies(self):
        assert set(FIELD_STRATEGIES) == set(OFFER_FIELDS)
        assert all(FIELD_STRATEGIES[name] for name in OFFER_FIELDS)

    def test_values_capped(self):
        text = "123 Main Street " + "x" * 400
        fields = recognize_fields(text)
        assert fields["property_address"].startswith("123 Main Street")
        assert len(fields["property_address"]) == MAX_FIELD_LENGTH


class TestRecognitionTrace:
    """Tests for strategy provenance and review flags."""

    def test_strategy_names_recorded(self, sample_purchase_agreement):
        result = recognize_fields_with_trace(sample_purchase_agreement)
        assert result.fields["sale_price"].strategy == "dollar_amount"
        assert result.fields["buyer_name"].strategy == "inline_label"
        assert result.fields["property_address"].strategy == "address_in_line"
        assert result.fields["acceptance_date"].strategy == "earliest_date"

    def test_complete_agreement_needs_no_review(self, sample_purchase_agreement):
        result = recognize_fields_with_trace(sample_purchase_agreement)
        assert result.needs_review() == []

    def test_loose_price_flagged_for_review(self):
        result = recognize_fields_with_trace("Purchase price 350000 payable at closing")
        price = result.fields["sale_price"]
        assert price.strategy == "grouped_or_long_number"
        assert price.confidence_level() == RecognitionConfidence.LOW
        assert "sale_price" in result.needs_review()

    def test_missing_fields_flagged_for_review(self):
        result = recognize_fields_with_trace("Buyer: Jane Doe")
        review = result.needs_review()
        assert "buyer_name" not in review
        assert "acceptance_date" in review

    def test_to_dict(self, sample_purchase_agreement):
        data = recognize_fields_with_trace(sample_purchase_agreement).to_dict()
        assert data["fields"]["sale_price"]["value"] == "$750,000.00"
        assert data["fields"]["sale_price"]["confidence_level"] == "high"
        assert data["needs_review"] == []


# ============================================================================
# Date Tests
# ============================================================================

class TestDates:
    """Tests for acceptance/closing date heuristics."""

    def test_labels_on_separate_lines(self):
        text = "Acceptance Date\n03/01/2024\nSome terms\nClosing Date\n04/15/2024"
        fields = recognize_fields(text)
        assert fields["acceptance_date"] == "2024-03-01"
        assert fields["closing_date"] == "2024-04-15"

    def test_single_date_leaves_closing_empty(self):
        fields = recognize_fields("Acceptance Date: 03/01/2024")
        assert fields["acceptance_date"] == "2024-03-01"
        assert fields["closing_date"] == ""

    def test_repeated_date_counts_once(self):
        fields = recognize_fields("Accepted 03/01/2024. Signed by both parties 03/01/2024.")
        assert fields["acceptance_date"] == "2024-03-01"
        assert fields["closing_date"] == ""

    def test_month_name_and_iso_dates(self):
        fields = recognize_fields("Accepted on March 1, 2024. Close of escrow 2024-04-15.")
        assert fields["acceptance_date"] == "2024-03-01"
        assert fields["closing_date"] == "2024-04-15"

    def test_month_name_variants(self):
        assert parse_dates("Sept. 5th, 2024") == [date(2024, 9, 5)]
        assert parse_dates("dec 31 2025") == [date(2025, 12, 31)]

    def test_two_digit_year(self):
        assert parse_dates("03-01-24") == [date(2024, 3, 1)]

    def test_invalid_dates_dropped(self):
        assert parse_dates("13/45/2024 and 02/30/2024") == []

    def test_dates_sorted_and_distinct(self):
        view = build_document_view("04/15/2024\n03/01/2024\nMarch 1, 2024")
        assert collect_contract_dates(view.lines, view.whole) == [
            date(2024, 3, 1),
            date(2024, 4, 15),
        ]

    def test_earlier_listing_date_becomes_acceptance(self):
        """Known limitation: any earlier date wins acceptance."""
        text = (
            "Listing Date: 01/15/2024\n"
            "Acceptance Date: 03/01/2024\n"
            "Closing Date: 04/15/2024"
        )
        fields = recognize_fields(text)
        assert fields["acceptance_date"] == "2024-01-15"
        assert fields["closing_date"] == "2024-04-15"


# ============================================================================
# Price Tests
# ============================================================================

class TestSalePrice:
    """Tests for sale price heuristics."""

    def test_dollar_amount_alone(self):
        assert recognize_fields("$350,000")["sale_price"] == "$350,000"

    def test_small_amounts_skipped(self):
        fields = recognize_fields("Deposit $500 and purchase price $425,000")
        assert fields["sale_price"] == "$425,000"

    def test_amount_at_threshold_rejected(self):
        assert recognize_fields("Fee $1,000")["sale_price"] == ""

    def test_space_after_dollar_sign(self):
        assert recognize_fields("Price: $ 299,900")["sale_price"] == "$299,900"

    def test_plain_number_fallback(self):
        assert recognize_fields("Purchase price 350000 payable")["sale_price"] == "$350000"

    def test_grouped_number_fallback(self):
        assert recognize_fields("Purchase price 350,000 USD")["sale_price"] == "$350,000"

    def test_year_read_as_price(self):
        """Known limitation: a bare four-digit year passes the threshold."""
        assert recognize_fields("Contract year 2024")["sale_price"] == "$2024"

    def test_malformed_grouping_rejected(self):
        assert recognize_fields("Price $1,2345")["sale_price"] == ""

    def test_dollar_pattern_needs_whole_number(self):
        assert dollar_amount(["Price $1,2345"], "") is None
        assert dollar_amount(["Price $12345"], "") == "$12345"

    def test_trailing_comma_after_price(self):
        text = "for the sum of $350,000, payable at closing"
        assert recognize_fields(text)["sale_price"] == "$350,000"


# ============================================================================
# Period Tests
# ============================================================================

class TestPeriods:
    """Tests for inspection/appraisal/financing day counts."""

    def test_inline_day_count(self):
        fields = recognize_fields("Inspection period shall be 7 days")
        assert fields["inspection_period"] == "7"

    def test_appraise_keyword(self):
        fields = recognize_fields("Lender to appraise property within 14 days")
        assert fields["appraisal_period"] == "14"

    def test_loan_keyword(self):
        fields = recognize_fields("Loan approval within 45 days")
        assert fields["financing_deadline"] == "45"

    def test_next_line_day_count(self):
        text = "Inspection Contingency\nBuyer shall have 14 calendar days"
        result = recognize_fields_with_trace(text)
        assert result.fields["inspection_period"].value == "14"
        assert result.fields["inspection_period"].strategy == "next_line_day_count"

    def test_date_after_keyword_not_a_period(self):
        fields = recognize_fields("Inspection Date: 03/15/2024")
        assert fields["inspection_period"] == ""

    def test_loan_amount_not_a_period(self):
        fields = recognize_fields("Loan amount: $280,000")
        assert fields["financing_deadline"] == ""

    def test_number_too_far_from_keyword(self):
        text = "Inspection will be arranged by the buyer at their sole discretion, 10 days"
        fields = recognize_fields(text)
        assert fields["inspection_period"] == ""

    def test_leading_zeros_normalized(self):
        assert recognize_fields("Inspection: 010 days")["inspection_period"] == "10"

    def test_lone_number_on_next_line(self):
        text = (
            "Inspection Period\n10\n"
            "Appraisal Period:\n21\n"
            "Financing Deadline\n30\n"
        )
        result = recognize_fields_with_trace(text)
        assert result.fields["inspection_period"].value == "10"
        assert result.fields["appraisal_period"].value == "21"
        assert result.fields["financing_deadline"].value == "30"
        assert result.fields["inspection_period"].strategy == "next_line_day_count"

    def test_date_on_next_line_not_a_period(self):
        fields = recognize_fields("Inspection Deadline\n03/15/2024")
        assert fields["inspection_period"] == ""

    def test_price_on_next_line_not_a_period(self):
        fields = recognize_fields("Loan Amount\n280,000")
        assert fields["financing_deadline"] == ""


# ============================================================================
# Address Tests
# ============================================================================

class TestPropertyAddress:
    """Tests for property address heuristics."""

    def test_label_dropped_rest_of_line_kept(self):
        fields = recognize_fields("Property: 123 Main St., Denver, CO 80202")
        assert fields["property_address"] == "123 Main St., Denver, CO 80202"

    def test_address_wrapped_across_lines(self):
        result = recognize_fields_with_trace("Property located at 1600\nPennsylvania Avenue")
        assert result.fields["property_address"].value == "1600 Pennsylvania Avenue"
        assert result.fields["property_address"].strategy == "address_in_whole_text"

    def test_no_street_type(self):
        assert recognize_fields("Lot 42 in the subdivision")["property_address"] == ""


# ============================================================================
# Name Tests
# ============================================================================

class TestNames:
    """Tests for buyer/seller name heuristics."""

    def test_inline_label(self):
        fields = recognize_fields("Buyer: Jane Doe\nSeller Name - John Roe")
        assert fields["buyer_name"] == "Jane Doe"
        assert fields["seller_name"] == "John Roe"

    def test_label_then_next_line(self):
        result = recognize_fields_with_trace("Buyer Name:\nJane Doe")
        assert result.fields["buyer_name"].value == "Jane Doe"
        assert result.fields["buyer_name"].strategy == "label_then_next_line"

    def test_keyword_window(self):
        result = recognize_fields_with_trace(
            "The undersigned buyer, ____ Alice Walker, agrees to purchase."
        )
        assert result.fields["buyer_name"].value == "Alice Walker"
        assert result.fields["buyer_name"].strategy == "keyword_window"

    def test_signature_block(self, signature_page):
        result = recognize_fields_with_trace(signature_page)
        assert result.fields["buyer_name"].value == "Alice Walker"
        assert result.fields["buyer_name"].strategy == "signature_block"
        assert result.fields["seller_name"].value == "Bob Turner"

    def test_trailing_label_trimmed(self):
        fields = recognize_fields("SELLER: Robert Johnson Email: rj@example.com")
        assert fields["seller_name"] == "Robert Johnson"

    def test_buyers_agent_not_buyer(self):
        fields = recognize_fields("BUYER'S AGENT: David Lee Thompson\nBUYER: John Smith")
        assert fields["buyer_name"] == "John Smith"

    def test_lowercase_words_not_names(self):
        fields = recognize_fields("Buyer and Seller agree to the terms.")
        assert fields["buyer_name"] == ""
        assert fields["seller_name"] == ""


class TestCleanNameCandidate:
    """Tests for label-word trimming."""

    def test_leading_labels_removed(self):
        assert clean_name_candidate("Signature John Smith") == "John Smith"

    def test_cut_at_first_label(self):
        assert clean_name_candidate("Mary Jones Date Phone") == "Mary Jones"

    def test_only_labels(self):
        assert clean_name_candidate("Printed Name") is None

    def test_possessive_label(self):
        assert clean_name_candidate("Buyer's") is None

    def test_single_letter_rejected(self):
        assert clean_name_candidate("X") is None

    def test_empty(self):
        assert clean_name_candidate("") is None
        assert clean_name_candidate(None) is None


# ============================================================================
# Node Tests
# ============================================================================

class TestFieldRecognizerNode:
    """Tests for the pipeline node wrapper."""

    def test_node_returns_field_map(self, sample_purchase_agreement):
        update = field_recognizer_node({"extracted_text": sample_purchase_agreement})
        assert update["recognized_fields"]["buyer_name"] == "John Michael Smith"

    def test_node_without_text(self):
        update = field_recognizer_node({})
        assert set(update["recognized_fields"]) == set(OFFER_FIELDS)
