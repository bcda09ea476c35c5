import pytest
from langchain_core.language_models import FakeListChatModel
from langchain_core.runnables import RunnableLambda
from pydantic import ValidationError

from guide_agent.agent.fallback import LegacyPath
from guide_agent.agent.registry import ToolRegistry
from guide_agent.agent.router import ToolRouter
from guide_agent.agent.tools import register_builtin_tools
from guide_agent.config import FusionConfig, ProviderConfig
from guide_agent.errors import ProviderError
from guide_agent.flags import FeatureFlagSet, FeatureFlagStore
from guide_agent.obs.metrics import PerformanceMonitor
from guide_agent.pipeline.ambiguity import AmbiguityDetector
from guide_agent.pipeline.modular import ModularPath, PlaceSearchPipeline, radius_steps
from guide_agent.pipeline.synthesizer import AnswerSynthesizer
from guide_agent.pipeline.validator import SAFE_FALLBACK_PREFIX
from guide_agent.providers.base import SearchProvider, StaticPlaceProvider
from guide_agent.providers.location import StaticLocationProvider
from guide_agent.types import (
    ExecutionPath,
    LocationFix,
    MigrationState,
    ResultSet,
    ToolCategory,
    ToolInvocation,
    ToolResponse,
)


class BrokenProvider(SearchProvider):
    def __init__(self) -> None:
        super().__init__(ProviderConfig(retry_backoff_seconds=0.0))

    @property
    def name(self) -> str:
        return "broken"

    async def search(self, query, location, constraints) -> ResultSet:
        raise ProviderError("upstream down", transient=True)


class Stack:
    def __init__(
        self,
        providers,
        *,
        fix: LocationFix | None,
        web_providers=(),
        detector_llm=None,
        synthesizer_llm=None,
        state: MigrationState = MigrationState.HYBRID,
    ) -> None:
        self.legacy_calls: list[str] = []
        self.pipeline = PlaceSearchPipeline(
            place_providers=providers,
            web_providers=web_providers,
            location=StaticLocationProvider(fix),
            detector=AmbiguityDetector(detector_llm),
            synthesizer=AnswerSynthesizer(synthesizer_llm),
        )
        registry = ToolRegistry()
        register_builtin_tools(registry, self.pipeline)
        self.flags = FeatureFlagStore(
            initial=FeatureFlagSet(migration_state=state, enabled_categories=frozenset(ToolCategory))
        )
        self.monitor = PerformanceMonitor()
        self.router = ToolRouter(
            registry=registry,
            flags=self.flags,
            modular=ModularPath(registry),
            legacy=LegacyPath(self._legacy),
            monitor=self.monitor,
        )

    async def _legacy(self, tool_name, params) -> ToolResponse:
        self.legacy_calls.append(tool_name)
        return ToolResponse(content=f"legacy {tool_name}")

    async def call(self, tool_name: str, **params):
        return await self.router.execute(ToolInvocation(tool_name=tool_name, params=params))


@pytest.fixture
def nearby_restaurants(place_factory):
    return [
        place_factory("Jacob's Pickles", "509 Amsterdam Ave, New York, NY 10024", north_meters=300),
        place_factory("Levain Bakery", "167 W 74th St, New York, NY 10023", north_meters=150),
        place_factory("Old Diner", "12 W 70th St, New York, NY 10023", north_meters=50, is_operational=False),
    ]


@pytest.mark.asyncio
async def test_restaurant_search_end_to_end(origin, nearby_restaurants) -> None:
    google = StaticPlaceProvider(nearby_restaurants, name="google_places")
    stack = Stack([google], fix=LocationFix(point=origin))

    result = await stack.call("find_nearby_restaurants", cuisine_type="american")

    assert result.path is ExecutionPath.MODULAR
    assert not result.is_error
    lines = result.content.splitlines()
    assert lines[0] == "Here are the closest options I found:"
    assert lines[1].startswith("1. Levain Bakery, 167 W 74th St")
    assert lines[2].startswith("2. Jacob's Pickles")
    assert lines[3].startswith("3. Old Diner") and "closed" in lines[3]
    assert stack.legacy_calls == []
    assert google.calls == 1


@pytest.mark.asyncio
async def test_radius_widens_until_coverage_is_sufficient(origin, place_factory) -> None:
    google = StaticPlaceProvider(
        [
            place_factory("Cafe Lalo", "201 W 83rd St, New York", north_meters=2000),
            place_factory("Hungarian Pastry Shop", "1030 Amsterdam Ave, New York", north_meters=2500),
        ],
        name="google_places",
    )
    stack = Stack([google], fix=LocationFix(point=origin))

    result = await stack.call("find_nearby_places", category="cafe")

    assert google.calls == 2
    assert "Cafe Lalo" in result.content
    assert "Hungarian Pastry Shop" in result.content


@pytest.mark.asyncio
async def test_no_candidates_is_a_successful_answer(origin) -> None:
    google = StaticPlaceProvider([], name="google_places")
    stack = Stack([google], fix=LocationFix(point=origin))

    result = await stack.call("find_nearby_restaurants")

    assert not result.is_error
    assert result.content == "I couldn't find any restaurants nearby."
    assert google.calls == 3


@pytest.mark.asyncio
async def test_clarification_stops_before_synthesis(origin, nearby_restaurants) -> None:
    synthesized: list[object] = []

    def _synth(prompt_value: object) -> str:
        synthesized.append(prompt_value)
        return "should never be used"

    stack = Stack(
        [StaticPlaceProvider(nearby_restaurants)],
        fix=LocationFix(point=origin),
        detector_llm=FakeListChatModel(responses=["CLARIFY: Did you mean Levain Bakery, or another bakery?"]),
        synthesizer_llm=RunnableLambda(_synth),
    )

    result = await stack.call("find_nearby_restaurants", query="levane")

    assert result.content == "Did you mean Levain Bakery, or another bakery?"
    assert not result.is_error
    assert synthesized == []


@pytest.mark.asyncio
async def test_hallucinated_address_is_replaced(origin, nearby_restaurants) -> None:
    stack = Stack(
        [StaticPlaceProvider(nearby_restaurants)],
        fix=LocationFix(point=origin, is_moving=True),
        detector_llm=FakeListChatModel(responses=["PROCEED"]),
        synthesizer_llm=FakeListChatModel(responses=["Try Levain Bakery at 99 Imaginary Street, it's great."]),
    )

    result = await stack.call("find_nearby_restaurants", query="cookies")

    assert result.content.startswith(SAFE_FALLBACK_PREFIX)
    assert "Imaginary" not in result.content
    assert "1. Levain Bakery, 167 W 74th St, New York, NY 10023" in result.content


@pytest.mark.asyncio
async def test_grounded_model_answer_passes_through(origin, nearby_restaurants) -> None:
    answer = "Levain Bakery at 167 W 74th St is open and just a couple of minutes away."
    stack = Stack(
        [StaticPlaceProvider(nearby_restaurants)],
        fix=LocationFix(point=origin),
        detector_llm=FakeListChatModel(responses=["PROCEED"]),
        synthesizer_llm=FakeListChatModel(responses=[answer]),
    )

    result = await stack.call("find_nearby_restaurants", query="cookies")

    assert result.content == answer


@pytest.mark.asyncio
async def test_missing_location_falls_back_to_legacy(nearby_restaurants) -> None:
    stack = Stack([StaticPlaceProvider(nearby_restaurants)], fix=None)

    result = await stack.call("find_nearby_restaurants")

    assert result.fallback_used
    assert result.content == "legacy find_nearby_restaurants"


@pytest.mark.asyncio
async def test_explicit_coordinates_override_location_provider(origin, nearby_restaurants) -> None:
    stack = Stack([StaticPlaceProvider(nearby_restaurants)], fix=None)

    result = await stack.call(
        "find_nearby_restaurants",
        latitude=origin.latitude,
        longitude=origin.longitude,
        radius="2000",
    )

    assert result.path is ExecutionPath.MODULAR
    assert "Levain Bakery" in result.content


@pytest.mark.asyncio
async def test_all_providers_failing_falls_back(origin) -> None:
    stack = Stack([BrokenProvider()], fix=LocationFix(point=origin))

    result = await stack.call("find_nearby_services", service_type="pharmacy")

    assert result.fallback_used
    assert stack.legacy_calls == ["find_nearby_services"]


@pytest.mark.asyncio
async def test_one_failing_provider_still_answers(origin, nearby_restaurants) -> None:
    stack = Stack([BrokenProvider(), StaticPlaceProvider(nearby_restaurants)], fix=LocationFix(point=origin))

    result = await stack.call("find_nearby_restaurants")

    assert result.path is ExecutionPath.MODULAR
    assert "Levain Bakery" in result.content


@pytest.mark.asyncio
async def test_legacy_only_tool_falls_back_when_category_enabled(origin) -> None:
    stack = Stack([StaticPlaceProvider([])], fix=LocationFix(point=origin))

    result = await stack.call("get_weather", location="New York")

    assert result.fallback_used
    assert result.content == "legacy get_weather"


@pytest.mark.asyncio
async def test_invalid_parameters_error_in_modular_only(origin) -> None:
    stack = Stack([StaticPlaceProvider([])], fix=LocationFix(point=origin), state=MigrationState.MODULAR_ONLY)

    result = await stack.call("find_nearby_services")

    assert result.is_error
    assert stack.legacy_calls == []


@pytest.mark.asyncio
async def test_web_search_returns_snippets(origin) -> None:
    brave = StaticPlaceProvider(
        [],
        snippets=["Central Park: open 6am to 1am daily", "Events: SummerStage concerts tonight"],
        name="brave",
    )
    stack = Stack([], fix=LocationFix(point=origin), web_providers=[brave])

    result = await stack.call("web_search", query="central park events tonight")

    assert result.content.startswith("Here's what I found on the web:")
    assert "- Central Park: open 6am to 1am daily" in result.content


def test_radius_steps_skip_smaller_rungs() -> None:
    assert radius_steps([1500.0, 3000.0, 5000.0]) == [1500.0, 3000.0, 5000.0]
    assert radius_steps([1500.0, 3000.0, 5000.0], 2000.0) == [2000.0, 3000.0, 5000.0]
    assert radius_steps([1500.0, 3000.0, 5000.0], 8000.0) == [8000.0]


def test_radius_ladder_needs_at_least_one_rung() -> None:
    with pytest.raises(ValidationError):
        FusionConfig(radius_ladder_meters=[])
