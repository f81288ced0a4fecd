import asyncio

import pytest
from unittest.mock import AsyncMock

from switchboard.complexity import (
    JobComplexityResult,
    classify_tier1,
    overall_recommendation,
    refine_tier2,
)
from switchboard.routing import TrafficLight


def _result(light, confidence=60, needs_specialist=False):
    return JobComplexityResult(traffic_light=light, confidence=confidence, needs_specialist=needs_specialist)


class TestTier1:
    def test_matched_is_green(self):
        result = classify_tier1("Mount TV", matched=True)
        assert result.traffic_light == TrafficLight.GREEN
        assert result.confidence == 95
        assert result.recommended_route == "instant"
        assert result.complexity_score == 2

    def test_red_keywords_raise_confidence(self):
        single = classify_tier1("can you look at the boiler", matched=False)
        assert single.traffic_light == TrafficLight.RED
        assert single.confidence == 80
        assert single.recommended_route == "refer"
        assert single.needs_specialist

        many = classify_tier1("my gas boiler is making noises", matched=False)
        assert many.confidence == 95
        assert 'RED: "gas boiler"' in many.signals

    def test_amber_keyword(self):
        result = classify_tier1("there's a leak under the sink", matched=False)
        assert result.traffic_light == TrafficLight.AMBER
        assert result.confidence == 60
        assert result.recommended_route == "video"

    def test_no_signal_is_low_confidence_amber(self):
        result = classify_tier1("something odd with the door", matched=False)
        assert result.traffic_light == TrafficLight.AMBER
        assert result.confidence == 40
        assert result.signals == ["No SKU match"]


class TestRefineTier2:
    @pytest.mark.asyncio
    async def test_parses_assessment(self):
        assess_fn = AsyncMock(return_value={
            "trafficLight": "RED",
            "recommendedRoute": "refer",
            "complexityScore": 14,
            "needsSpecialist": True,
            "confidence": 88,
            "signals": ["gas appliance"],
            "reasoning": "Gas work needs a registered engineer",
        })
        result = await refine_tier2(assess_fn, "gas hob not lighting", other_jobs=["gas hob not lighting", "Mount TV"])
        assert result.tier == 2
        assert result.traffic_light == TrafficLight.RED
        assert result.complexity_score == 10
        assert result.needs_specialist
        assert result.signals == ["gas appliance"]
        assess_fn.assert_awaited_once_with("gas hob not lighting", {"sku_name": None, "other_jobs": ["Mount TV"]})

    @pytest.mark.asyncio
    async def test_missing_route_follows_light(self):
        assess_fn = AsyncMock(return_value={"trafficLight": "amber", "confidence": 70})
        result = await refine_tier2(assess_fn, "replace a cracked tile")
        assert result.recommended_route == "video"
        assert result.complexity_score == 5

    @pytest.mark.asyncio
    async def test_invalid_light_keeps_tier1(self):
        assess_fn = AsyncMock(return_value={"trafficLight": "purple"})
        assert await refine_tier2(assess_fn, "replace a cracked tile") is None

    @pytest.mark.asyncio
    async def test_empty_answer(self):
        assert await refine_tier2(AsyncMock(return_value={}), "replace a cracked tile") is None

    @pytest.mark.asyncio
    async def test_error(self):
        assess_fn = AsyncMock(side_effect=RuntimeError("503"))
        assert await refine_tier2(assess_fn, "replace a cracked tile") is None

    @pytest.mark.asyncio
    async def test_timeout(self):
        async def slow(description, context):
            await asyncio.sleep(1)
            return {"trafficLight": "green"}

        assert await refine_tier2(slow, "replace a cracked tile", timeout=0.01) is None


class TestOverallRecommendation:
    def test_no_jobs(self):
        assert overall_recommendation([]) == {"route": "video", "reason": "No jobs detected yet", "confidence": 0}

    def test_all_green(self):
        rec = overall_recommendation([_result(TrafficLight.GREEN, 95), _result(TrafficLight.GREEN, 90)])
        assert rec["route"] == "instant"
        assert rec["confidence"] == 95

    def test_one_amber_is_video(self):
        rec = overall_recommendation([_result(TrafficLight.GREEN, 95), _result(TrafficLight.AMBER, 60)])
        assert rec["route"] == "video"
        assert rec["reason"] == "1 job need visual confirmation"

    def test_three_amber_is_visit(self):
        rec = overall_recommendation([_result(TrafficLight.AMBER)] * 3)
        assert rec["route"] == "visit"

    def test_red_with_specialist_is_refer(self):
        rec = overall_recommendation([
            _result(TrafficLight.RED, 80, needs_specialist=True),
            _result(TrafficLight.AMBER),
        ])
        assert rec["route"] == "refer"
        assert rec["confidence"] == 80

    def test_red_without_specialist_is_visit(self):
        rec = overall_recommendation([_result(TrafficLight.RED, 75), _result(TrafficLight.RED, 85)])
        assert rec["route"] == "visit"
        assert rec["reason"] == "2 jobs need site visit"
