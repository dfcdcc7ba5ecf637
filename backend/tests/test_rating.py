"""Tests for the rating updater."""

from decimal import Decimal

import pytest

from peerlend.models.user import User
from peerlend.services.exceptions import NotFoundError, ValidationError
from peerlend.services.rating import apply_rating, next_average, validate_rating


class TestNextAverage:

    def test_first_rating(self):
        assert next_average(Decimal("0"), 0, 4) == (1, Decimal("4.00"))

    def test_quantised_half_up(self):
        # (4 + 5 + 5) / 3 = 4.666...
        total, average = next_average(Decimal("4.50"), 2, 5)
        assert total == 3
        assert average == Decimal("4.67")


class TestValidateRating:

    @pytest.mark.parametrize("value", [0, 6, -1])
    def test_out_of_range(self, value):
        with pytest.raises(ValidationError):
            validate_rating(value)

    @pytest.mark.parametrize("value", [4.5, "5", True, None])
    def test_not_an_integer(self, value):
        with pytest.raises(ValidationError):
            validate_rating(value)

    def test_valid(self):
        assert validate_rating(1) == 1
        assert validate_rating(5) == 5


class TestApplyRating:

    @pytest.mark.asyncio
    async def test_ratings_four_then_two_average_three(self, db, borrower):
        await apply_rating(db, borrower.id, 4)
        await apply_rating(db, borrower.id, 2)
        await db.commit()

        user = await db.get(User, borrower.id, populate_existing=True)
        assert user.total_ratings == 2
        assert user.average_rating == Decimal("3.00")

    @pytest.mark.asyncio
    async def test_unknown_user(self, db):
        with pytest.raises(NotFoundError):
            await apply_rating(db, 9999, 3)
