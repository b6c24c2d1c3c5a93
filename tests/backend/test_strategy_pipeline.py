"""
Tests for the locator repair strategies and the similarity scorer.
"""

import asyncio

import pytest

from healing_engine.core.exceptions import OracleTimeoutError
from healing_engine.core.models import (
    ElementSnapshot, HealingStrategy, LiveElement, Locator, Rect
)
from healing_engine.services.ai_oracle import OracleGateway
from healing_engine.services.similarity_scorer import SimilarityScorer
from healing_engine.services.strategy_pipeline import (
    NOT_FOUND, PageContext, StrategyPipeline, VisualContext, infer_element_kind
)
from tests.utils.healing_fakes import (
    USERNAME_FALLBACK, USERNAME_PATH, USERNAME_PRIMARY, FakeElementLocator, FakeOracle,
    suggestion_json
)


SCREENSHOT = VisualContext("iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mNk")

USERNAME_SNAPSHOT = ElementSnapshot(
    text="Username",
    rect=Rect(x=40, y=300, width=600, height=80),
    attributes={"content-desc": "Username", "class": "android.widget.EditText"},
)


def username_field(locator, text="Username", y=300, attributes=None):
    return LiveElement(
        locator=locator,
        text=text,
        rect=Rect(x=40, y=y, width=600, height=80),
        attributes=attributes if attributes is not None else {
            "content-desc": "Username", "class": "android.widget.EditText"},
    )


def build_pipeline(element_locator, oracle=None, timeout=0.2):
    return StrategyPipeline(element_locator, OracleGateway(oracle, timeout=timeout, retries=1))


def page_context(last_known=USERNAME_SNAPSHOT, kind="EditText"):
    return PageContext(element_path=USERNAME_PATH, kind=kind, last_known=last_known,
                       error_message="NoSuchElementError: element not found")


class TestFallbackChain:
    """Fallbacks are tried in stored order."""

    @pytest.mark.asyncio
    async def test_earliest_resolving_fallback_wins(self):
        first = Locator("resource_id", "com.app:id/username")
        second = USERNAME_FALLBACK
        driver = FakeElementLocator(resolvable=[first, second])
        pipeline = build_pipeline(driver)

        attempt = await pipeline.repair(USERNAME_PRIMARY, [first, second], None, page_context())

        assert attempt.strategy == HealingStrategy.FALLBACK_CHAIN
        assert attempt.candidate == first
        assert attempt.raw_signal["fallback_index"] == 0

    @pytest.mark.asyncio
    async def test_skips_fallbacks_that_do_not_resolve(self):
        dead = Locator("resource_id", "com.app:id/old_username")
        driver = FakeElementLocator(resolvable=[USERNAME_FALLBACK])
        pipeline = build_pipeline(driver)

        attempt = await pipeline.try_fallback_chain(USERNAME_PRIMARY, [dead, USERNAME_FALLBACK])

        assert attempt.candidate == USERNAME_FALLBACK
        assert driver.resolve_calls == [dead, USERNAME_FALLBACK]

    @pytest.mark.asyncio
    async def test_failed_locator_in_fallbacks_is_skipped(self):
        driver = FakeElementLocator(resolvable=[USERNAME_PRIMARY])
        pipeline = build_pipeline(driver)

        attempt = await pipeline.try_fallback_chain(USERNAME_PRIMARY, [USERNAME_PRIMARY])

        assert attempt is NOT_FOUND
        assert driver.resolve_calls == []

    @pytest.mark.asyncio
    async def test_driver_errors_count_as_not_resolvable(self):
        driver = FakeElementLocator(resolvable=[USERNAME_FALLBACK],
                                    failing=[Locator("id", "crashes")])
        pipeline = build_pipeline(driver)

        attempt = await pipeline.try_fallback_chain(
            USERNAME_PRIMARY, [Locator("id", "crashes"), USERNAME_FALLBACK])

        assert attempt.candidate == USERNAME_FALLBACK


class TestAiSuggestion:
    """The oracle's best suggestion is used only when it resolves."""

    @pytest.mark.asyncio
    async def test_highest_confidence_suggestion_is_chosen(self):
        best = Locator("accessibility_id", "login-username")
        oracle = FakeOracle(suggest_responses=[suggestion_json(
            {"type": "xpath", "value": "//EditText[1]", "confidence": 60, "reasoning": "first field"},
            {"type": "accessibility_id", "value": "login-username", "confidence": 90,
             "reasoning": "new accessibility id"},
        )])
        driver = FakeElementLocator(resolvable=[best, Locator("xpath", "//EditText[1]")])
        pipeline = build_pipeline(driver, oracle)

        attempt = await pipeline.repair(USERNAME_PRIMARY, [], SCREENSHOT, page_context())

        assert attempt.strategy == HealingStrategy.AI_SUGGESTED
        assert attempt.candidate == best
        assert attempt.raw_signal["oracle_confidence"] == 90
        assert oracle.suggest_calls[0]["image"] == SCREENSHOT.image

    @pytest.mark.asyncio
    async def test_unresolvable_suggestion_falls_through_to_similarity(self):
        live = Locator("resource_id", "com.app:id/user_name")
        oracle = FakeOracle(suggest_responses=[suggestion_json(
            {"type": "accessibility_id", "value": "ghost", "confidence": 95, "reasoning": ""},
        )])
        driver = FakeElementLocator(resolvable=[live], siblings={"EditText": [username_field(live)]})
        pipeline = build_pipeline(driver, oracle)

        attempt = await pipeline.repair(USERNAME_PRIMARY, [], SCREENSHOT, page_context())

        assert attempt.strategy == HealingStrategy.SIMILARITY_MATCH
        assert attempt.candidate == live

    @pytest.mark.asyncio
    async def test_no_screenshot_skips_the_oracle(self):
        oracle = FakeOracle(suggest_responses=[suggestion_json(
            {"type": "accessibility_id", "value": "login-username", "confidence": 90, "reasoning": ""},
        )])
        driver = FakeElementLocator(resolvable=[Locator("accessibility_id", "login-username")])
        pipeline = build_pipeline(driver, oracle)

        result = await pipeline.repair(USERNAME_PRIMARY, [], None, page_context())

        assert result is NOT_FOUND
        assert oracle.suggest_calls == []

    @pytest.mark.asyncio
    async def test_oracle_timeout_skips_the_stage(self):
        oracle = FakeOracle(suggest_responses=[suggestion_json(
            {"type": "accessibility_id", "value": "login-username", "confidence": 90, "reasoning": ""},
        )], delay=1.0)
        driver = FakeElementLocator(resolvable=[Locator("accessibility_id", "login-username")])
        pipeline = build_pipeline(driver, oracle, timeout=0.05)

        result = await pipeline.try_ai_suggestion(USERNAME_PRIMARY, SCREENSHOT, page_context())

        assert result is NOT_FOUND
        # One retry after the first timeout
        assert len(oracle.suggest_calls) == 2

    @pytest.mark.asyncio
    @pytest.mark.parametrize("response", [
        "I think the username field moved",
        '{"suggestedLocators": [{"type": "id", "value": "", "confidence": 80}]}',
        '{"suggestedLocators": [{"type": "id", "value": "x", "confidence": 180}]}',
        '["not", "an", "object"]',
    ])
    async def test_malformed_suggestions_skip_the_stage(self, response):
        oracle = FakeOracle(suggest_responses=[response])
        driver = FakeElementLocator(resolvable=[Locator("id", "x")])
        pipeline = build_pipeline(driver, oracle)

        result = await pipeline.try_ai_suggestion(USERNAME_PRIMARY, SCREENSHOT, page_context())

        assert result is NOT_FOUND

    @pytest.mark.asyncio
    async def test_fenced_json_is_accepted(self):
        answer = "Here you go:\n```json\n" + suggestion_json(
            {"type": "accessibility_id", "value": "login-username", "confidence": 88, "reasoning": ""},
        ) + "\n```"
        oracle = FakeOracle(suggest_responses=[answer])
        driver = FakeElementLocator(resolvable=[Locator("accessibility_id", "login-username")])
        pipeline = build_pipeline(driver, oracle)

        attempt = await pipeline.try_ai_suggestion(USERNAME_PRIMARY, SCREENSHOT, page_context())

        assert attempt.candidate == Locator("accessibility_id", "login-username")


class TestSimilarityMatch:
    """Live elements are matched against the last known snapshot."""

    @pytest.mark.asyncio
    async def test_most_similar_element_wins(self):
        username = Locator("resource_id", "com.app:id/user_name")
        password = Locator("resource_id", "com.app:id/password")
        driver = FakeElementLocator(
            resolvable=[username, password],
            siblings={"EditText": [
                username_field(password, text="Password", y=420,
                               attributes={"content-desc": "Password",
                                           "class": "android.widget.EditText"}),
                username_field(username),
            ]},
        )
        pipeline = build_pipeline(driver)

        attempt = await pipeline.try_similarity_match(USERNAME_PRIMARY, page_context())

        assert attempt.strategy == HealingStrategy.SIMILARITY_MATCH
        assert attempt.candidate == username
        assert attempt.raw_signal["similarity"] > 0.9
        assert driver.sibling_calls == ["EditText"]

    @pytest.mark.asyncio
    async def test_nothing_above_threshold(self):
        other = Locator("resource_id", "com.app:id/banner")
        driver = FakeElementLocator(
            resolvable=[other],
            siblings={"EditText": [LiveElement(
                locator=other, text="Welcome back, friend",
                rect=Rect(x=0, y=1500, width=100, height=20),
                attributes={"content-desc": "Banner"})]},
        )
        pipeline = build_pipeline(driver)

        assert await pipeline.try_similarity_match(USERNAME_PRIMARY, page_context()) is NOT_FOUND

    @pytest.mark.asyncio
    async def test_best_match_must_resolve(self):
        username = Locator("resource_id", "com.app:id/user_name")
        driver = FakeElementLocator(resolvable=[], siblings={"EditText": [username_field(username)]})
        pipeline = build_pipeline(driver)

        assert await pipeline.try_similarity_match(USERNAME_PRIMARY, page_context()) is NOT_FOUND

    @pytest.mark.asyncio
    async def test_locator_value_alone_is_not_enough(self):
        twin = Locator("resource_id", "com.app:id/user_name")
        driver = FakeElementLocator(
            resolvable=[twin],
            siblings={"EditText": [username_field(
                twin, attributes={"content-desc": USERNAME_PRIMARY.value})]},
        )
        pipeline = build_pipeline(driver)

        result = await pipeline.try_similarity_match(USERNAME_PRIMARY, page_context(last_known=None))

        assert result is NOT_FOUND

    @pytest.mark.asyncio
    async def test_kind_is_inferred_when_missing(self):
        driver = FakeElementLocator()
        pipeline = build_pipeline(driver)

        await pipeline.try_similarity_match(
            Locator("xpath", "//android.widget.Button[@text='Login']"), page_context(kind=None))

        assert driver.sibling_calls == ["Button"]


class TestRepairOrder:
    """Strategies run in priority order and stop at the first success."""

    @pytest.mark.asyncio
    async def test_fallback_short_circuits_later_strategies(self):
        oracle = FakeOracle(suggest_responses=[suggestion_json(
            {"type": "accessibility_id", "value": "login-username", "confidence": 99, "reasoning": ""},
        )])
        driver = FakeElementLocator(resolvable=[USERNAME_FALLBACK,
                                                Locator("accessibility_id", "login-username")])
        pipeline = build_pipeline(driver, oracle)

        attempt = await pipeline.repair(USERNAME_PRIMARY, [USERNAME_FALLBACK], SCREENSHOT, page_context())

        assert attempt.strategy == HealingStrategy.FALLBACK_CHAIN
        assert oracle.suggest_calls == []
        assert driver.sibling_calls == []

    @pytest.mark.asyncio
    async def test_not_found_when_every_strategy_fails(self):
        oracle = FakeOracle(suggest_responses=[OracleTimeoutError("slow")])
        driver = FakeElementLocator()
        pipeline = build_pipeline(driver, oracle)

        result = await pipeline.repair(USERNAME_PRIMARY, [USERNAME_FALLBACK], SCREENSHOT, page_context())

        assert result is NOT_FOUND
        assert not result


class TestInferElementKind:

    @pytest.mark.parametrize("locator,kind", [
        (Locator("xpath", "//android.widget.EditText[@content-desc='Username']"), "EditText"),
        (Locator("xpath", "//EditText[1]"), "EditText"),
        (Locator("class_name", "android.widget.Button"), "Button"),
        (Locator("css", "input#username"), "input"),
        (Locator("android_uiautomator", 'new UiSelector().className("android.widget.Switch")'), "Switch"),
        (Locator("ios_predicate", "type == 'XCUIElementTypeButton'"), "XCUIElementTypeButton"),
        (Locator("accessibility_id", "username-input"), "EditText"),
        (Locator("resource_id", "com.app:id/login_btn"), "Button"),
        (Locator("accessibility_id", "zzz"), "*"),
    ])
    def test_infer_element_kind(self, locator, kind):
        assert infer_element_kind(locator) == kind


class TestSimilarityScorer:

    def test_identical_element_scores_one(self):
        scorer = SimilarityScorer()
        element = username_field(Locator("id", "user"))
        assert scorer.calculate_similarity(USERNAME_SNAPSHOT, element) == pytest.approx(1.0)

    def test_unknown_properties_score_zero(self):
        scorer = SimilarityScorer()
        text_only = ElementSnapshot(text="Username")
        element = LiveElement(Locator("id", "user"), text="Username",
                              rect=Rect(x=900, y=900, width=1, height=1))
        assert scorer.calculate_similarity(text_only, element) == pytest.approx(0.30)

    def test_text_match_alone_is_not_accepted(self):
        scorer = SimilarityScorer()
        far_away = LiveElement(Locator("xpath", "//Button[9]"), text="Submit",
                               rect=Rect(x=900, y=2000, width=10, height=10))
        assert scorer.find_best_match(ElementSnapshot(text="Submit"), [far_away]) is None

    def test_empty_snapshot_scores_zero(self):
        scorer = SimilarityScorer()
        assert scorer.calculate_similarity(ElementSnapshot(), username_field(Locator("id", "u"))) == 0.0

    def test_threshold_is_exclusive(self):
        scorer = SimilarityScorer()
        element = username_field(Locator("id", "user"))
        assert scorer.find_best_match(USERNAME_SNAPSHOT, [element], threshold=1.0) is None

    def test_ranking_is_stable_for_ties(self):
        scorer = SimilarityScorer()
        first = username_field(Locator("id", "first"))
        second = username_field(Locator("id", "second"))
        ranked = scorer.rank_candidates(USERNAME_SNAPSHOT, [first, second])
        assert [element.locator.value for element, _ in ranked] == ["first", "second"]
