"""
NutriLens Backend: Analysis Service Tests
=========================================

What:  The paid estimate workflow and stored-analysis management.
How:   Real SQLite database and CreditLedger, FileService in a temporary
       directory, and a mocked LLMService.

What we test:
    ✅ Success: one credit consumed, analysis persisted, image kept
    ✅ Bad upload: nothing charged, nothing stored
    ✅ No credits: 429 path, image removed, LLM never called
    ✅ LLM / parse failure after consume: credit stays consumed, image removed
    ✅ Listing by day, ownership checks, delete removes the image
    ✅ A failed commit never leaves a row without its image or an orphaned file
"""

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
from sqlalchemy import func, select

from nutrilens.exceptions import (
    AIResponseFormatError,
    DatabaseError,
    InsufficientCreditsError,
    LLMServiceError,
    NotFoundError,
    ValidationError,
)
from nutrilens.models.food_analysis import FoodAnalysis
from nutrilens.services.analysis_service import ESTIMATE_ENDPOINT, utc_day_bounds


def stored_files(temp_storage):
    return [p for p in Path(temp_storage).rglob("*") if p.is_file()]


async def count_analyses(session_factory):
    async with session_factory() as session:
        return await session.scalar(select(func.count()).select_from(FoodAnalysis))


class TestEstimateCalories:

    async def run_estimate(self, service, session_factory, ledger, user, content, **kwargs):
        params = {"filename": "lunch.jpg", "content_type": "image/jpeg"}
        params.update(kwargs)
        async with session_factory() as session:
            result = await service.estimate_calories(
                db=session, ledger=ledger, user=user, content=content, **params
            )
            await session.commit()
        return result

    @pytest.mark.asyncio
    async def test_success(
        self, analysis_service, session_factory, ledger, make_user,
        sample_image_bytes, mock_llm, temp_storage,
    ):
        user = await make_user()

        result = await self.run_estimate(
            analysis_service, session_factory, ledger, user, sample_image_bytes
        )

        assert result.credits.remaining == 99
        assert result.credits.used == 1
        assert result.analysis.total_calories == "550"
        assert result.analysis.image_url == f"/api/food-analyses/{result.analysis_id}/image"
        assert len(result.analysis.food_items) == 2

        [image] = stored_files(temp_storage)
        mock_llm.analyze_image.assert_awaited_once_with(str(image.resolve()), "image/jpeg")
        assert await count_analyses(session_factory) == 1

        [tx] = await ledger.get_history(user.id)
        assert tx.amount == -1
        assert tx.endpoint_path == ESTIMATE_ENDPOINT

    @pytest.mark.asyncio
    async def test_priced_endpoint_charges_its_cost(
        self, analysis_service, session_factory, ledger, make_user, sample_image_bytes
    ):
        user = await make_user()

        result = await self.run_estimate(
            analysis_service, session_factory, ledger, user, sample_image_bytes,
            endpoint_path="/api/expensive",
        )

        assert result.credits.used == 5

    @pytest.mark.asyncio
    async def test_invalid_upload_charges_nothing(
        self, analysis_service, session_factory, ledger, make_user, mock_llm, temp_storage
    ):
        user = await make_user()

        with pytest.raises(ValidationError):
            await self.run_estimate(
                analysis_service, session_factory, ledger, user, b"%PDF-1.4",
                filename="menu.pdf", content_type="application/pdf",
            )

        assert (await ledger.get_balance(user.id)).used == 0
        mock_llm.analyze_image.assert_not_awaited()
        assert stored_files(temp_storage) == []

    @pytest.mark.asyncio
    async def test_insufficient_credits(
        self, analysis_service, session_factory, ledger, make_user,
        sample_image_bytes, mock_llm, temp_storage,
    ):
        user = await make_user(credits_total=100, credits_used=100)

        with pytest.raises(InsufficientCreditsError):
            await self.run_estimate(
                analysis_service, session_factory, ledger, user, sample_image_bytes
            )

        mock_llm.analyze_image.assert_not_awaited()
        assert stored_files(temp_storage) == []
        assert await ledger.get_history(user.id) == []

    @pytest.mark.asyncio
    async def test_llm_failure_keeps_credit_consumed(
        self, analysis_service, session_factory, ledger, make_user,
        sample_image_bytes, mock_llm, temp_storage,
    ):
        user = await make_user()
        mock_llm.analyze_image.side_effect = LLMServiceError()

        with pytest.raises(LLMServiceError):
            await self.run_estimate(
                analysis_service, session_factory, ledger, user, sample_image_bytes
            )

        assert (await ledger.get_balance(user.id)).used == 1
        assert stored_files(temp_storage) == []
        assert await count_analyses(session_factory) == 0

    @pytest.mark.asyncio
    async def test_malformed_answer(
        self, analysis_service, session_factory, ledger, make_user,
        sample_image_bytes, mock_llm, temp_storage,
    ):
        user = await make_user()
        mock_llm.analyze_image.return_value = "Looks like pasta, maybe 700 calories."

        with pytest.raises(AIResponseFormatError):
            await self.run_estimate(
                analysis_service, session_factory, ledger, user, sample_image_bytes
            )

        assert (await ledger.get_balance(user.id)).used == 1
        assert stored_files(temp_storage) == []

    @pytest.mark.asyncio
    async def test_failed_commit_removes_image(
        self, analysis_service, failing_commit_factory, session_factory, ledger,
        make_user, sample_image_bytes, temp_storage,
    ):
        user = await make_user()

        async with failing_commit_factory() as session:
            with pytest.raises(DatabaseError):
                await analysis_service.estimate_calories(
                    db=session, ledger=ledger, user=user, filename="lunch.jpg",
                    content=sample_image_bytes, content_type="image/jpeg",
                )

        assert stored_files(temp_storage) == []
        assert await count_analyses(session_factory) == 0
        assert (await ledger.get_balance(user.id)).used == 1


class TestStoredAnalyses:

    async def create(self, analysis_service, session_factory, ledger, user, content):
        async with session_factory() as session:
            result = await analysis_service.estimate_calories(
                db=session, ledger=ledger, user=user,
                filename="meal.png", content=content, content_type="image/png",
            )
            await session.commit()
        return result.analysis_id

    @pytest.mark.asyncio
    async def test_list_newest_first(
        self, analysis_service, session_factory, ledger, make_user, sample_image_bytes
    ):
        user = await make_user()
        first = await self.create(analysis_service, session_factory, ledger, user, sample_image_bytes)
        second = await self.create(analysis_service, session_factory, ledger, user, sample_image_bytes)

        async with session_factory() as session:
            listing = await analysis_service.list_analyses(session, user.id)

        assert listing.count == 2
        assert [a.id for a in listing.analyses] == [second, first]

    @pytest.mark.asyncio
    async def test_list_by_day(
        self, analysis_service, session_factory, ledger, make_user, sample_image_bytes
    ):
        user = await make_user()
        await self.create(analysis_service, session_factory, ledger, user, sample_image_bytes)
        today = datetime.now(timezone.utc).date()

        async with session_factory() as session:
            todays = await analysis_service.list_analyses(session, user.id, today)
            yesterdays = await analysis_service.list_analyses(
                session, user.id, today - timedelta(days=1)
            )

        assert todays.count == 1
        assert yesterdays.count == 0

    @pytest.mark.asyncio
    async def test_other_users_analysis_is_not_found(
        self, analysis_service, session_factory, ledger, make_user, sample_image_bytes
    ):
        owner = await make_user()
        stranger = await make_user()
        analysis_id = await self.create(
            analysis_service, session_factory, ledger, owner, sample_image_bytes
        )

        async with session_factory() as session:
            with pytest.raises(NotFoundError):
                await analysis_service.get_owned(session, stranger.id, analysis_id)
            assert (await analysis_service.list_analyses(session, stranger.id)).count == 0

    @pytest.mark.asyncio
    async def test_delete_removes_row_and_image(
        self, analysis_service, session_factory, ledger, make_user,
        sample_image_bytes, temp_storage,
    ):
        user = await make_user()
        analysis_id = await self.create(
            analysis_service, session_factory, ledger, user, sample_image_bytes
        )
        assert len(stored_files(temp_storage)) == 1

        async with session_factory() as session:
            await analysis_service.delete_analysis(session, user.id, analysis_id)
            await session.commit()

        assert stored_files(temp_storage) == []
        assert await count_analyses(session_factory) == 0
        # Deleting an analysis does not touch the credit log
        assert len(await ledger.get_history(user.id)) == 1

    @pytest.mark.asyncio
    async def test_failed_delete_commit_keeps_row_and_image(
        self, analysis_service, session_factory, failing_commit_factory, ledger,
        make_user, sample_image_bytes, temp_storage,
    ):
        user = await make_user()
        analysis_id = await self.create(
            analysis_service, session_factory, ledger, user, sample_image_bytes
        )

        async with failing_commit_factory() as session:
            with pytest.raises(DatabaseError):
                await analysis_service.delete_analysis(session, user.id, analysis_id)

        assert len(stored_files(temp_storage)) == 1
        assert await count_analyses(session_factory) == 1
        async with session_factory() as session:
            analysis = await analysis_service.get_owned(session, user.id, analysis_id)
            assert analysis_service.files.resolve(analysis.image_path).exists()


def test_utc_day_bounds():
    start, end = utc_day_bounds(datetime(2024, 1, 15).date())
    assert start == datetime(2024, 1, 15, tzinfo=timezone.utc)
    assert end - start == timedelta(days=1)
