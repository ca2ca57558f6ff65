"""
Unit Tests for the Offer Store

Tests cover:
1. Code normalisation and uniqueness
2. Active and unfiltered code lookup
3. Listing by target
4. Partial offer updates
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from pydantic import ValidationError as SchemaError

from wallet.collaborators import OfferStore
from wallet.errors import NotFoundError, ValidationError
from wallet.models import CouponTarget, OfferCreate, OfferUpdate


class TestOfferStore:
    """Tests for offer creation, lookup and listing."""

    def test_codes_stored_upper_case_and_unique(self, database, add_offer):
        """Codes are upper-cased and must be unique regardless of case."""
        offer = add_offer(code="welcome")
        assert offer.code == "WELCOME"

        with pytest.raises(ValidationError, match="already taken"):
            add_offer(code="Welcome")

    def test_lookup_is_case_insensitive_and_skips_expired(self, database, add_offer):
        """Active lookup ignores case and skips expired offers."""
        add_offer(code="LIVE", discount_percent=Decimal("5"))
        add_offer(code="GONE", valid_until=datetime.now(timezone.utc) - timedelta(hours=1))
        store = OfferStore()

        with database.transaction() as session:
            assert store.find_active_coupon_by_code(session, " live ").code == "LIVE"
            assert store.find_active_coupon_by_code(session, "gone") is None

    def test_unfiltered_lookup_finds_expired_and_inactive(self, database, add_offer):
        """The plain code lookup returns unusable offers so callers can say why."""
        add_offer(code="GONE", valid_until=datetime.now(timezone.utc) - timedelta(hours=1))
        add_offer(code="OFF", active=False)
        store = OfferStore()

        with database.transaction() as session:
            assert store.find_coupon_by_code(session, "gone").code == "GONE"
            assert store.find_coupon_by_code(session, " off ").active is False
            assert store.find_coupon_by_code(session, "nope") is None

    def test_list_active_by_target(self, database, add_offer):
        """Listing keeps matching and shared offers, ordered by sort_order."""
        add_offer(code="CUST", target=CouponTarget.CUSTOMER, sort_order=2)
        add_offer(code="PROV", target=CouponTarget.PROVIDER)
        add_offer(code="ALL", target=CouponTarget.BOTH, sort_order=1)
        add_offer(code="OFF", active=False)

        with database.transaction() as session:
            codes = [o.code for o in OfferStore().list_active_offers(session, CouponTarget.CUSTOMER)]
        assert codes == ["ALL", "CUST"]


class TestOfferUpdate:
    """Only fields explicitly present in the update are written."""

    def test_partial_update_touches_only_given_fields(self, database, add_offer):
        """Fields not sent keep their values."""
        offer = add_offer(code="PART", discount_percent=Decimal("15"), description="Spring sale")

        with database.transaction() as session:
            updated = OfferStore().update_offer(session, offer.id, OfferUpdate(active=False))

        assert updated.active is False
        assert updated.discount_percent == Decimal("15")
        assert updated.description == "Spring sale"

    def test_explicit_null_clears_nullable_field(self, database, add_offer):
        """An explicit None clears an optional field."""
        until = datetime.now(timezone.utc) + timedelta(days=3)
        offer = add_offer(code="CLEAR", valid_until=until)

        with database.transaction() as session:
            updated = OfferStore().update_offer(session, offer.id, OfferUpdate(valid_until=None))
        assert updated.valid_until is None

    def test_explicit_null_on_required_field_rejected(self, database, add_offer):
        """An explicit None on a required field is rejected."""
        offer = add_offer(code="KEEP")
        with pytest.raises(ValidationError):
            with database.transaction() as session:
                OfferStore().update_offer(session, offer.id, OfferUpdate(title=None))

    def test_code_change_upper_cased(self, database, add_offer):
        """A new code is upper-cased like on create."""
        offer = add_offer(code="OLDCODE")
        with database.transaction() as session:
            updated = OfferStore().update_offer(session, offer.id, OfferUpdate(code="newcode"))
        assert updated.code == "NEWCODE"

    def test_missing_offer(self, database):
        """Updating an unknown offer is a NotFoundError."""
        with pytest.raises(NotFoundError):
            with database.transaction() as session:
                OfferStore().update_offer(session, 404, OfferUpdate(active=True))

    def test_create_rejects_out_of_range_percent(self):
        """Percent above 100 fails schema validation."""
        with pytest.raises(SchemaError):
            OfferCreate(title="Bad", code="BAD", discount_percent=Decimal("150"))
