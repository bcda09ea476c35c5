"""Built-in tool definitions for the travel guide agent."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from guide_agent.agent.registry import ToolDefinition, ToolRegistry
from guide_agent.pipeline.modular import PlaceQuery, PlaceSearchPipeline
from guide_agent.types import GeoPoint, ToolCategory


class PlaceToolInput(BaseModel):
    query: str | None = None
    radius: float | None = Field(default=None, gt=0, le=50000)
    latitude: float | None = Field(default=None, ge=-90, le=90)
    longitude: float | None = Field(default=None, ge=-180, le=180)
    conversation_context: str | None = None

    def origin(self) -> GeoPoint | None:
        if self.latitude is None or self.longitude is None:
            return None
        return GeoPoint(latitude=self.latitude, longitude=self.longitude)


class NearbyPlacesInput(PlaceToolInput):
    category: str = Field(min_length=1)


class NearbyRestaurantsInput(PlaceToolInput):
    cuisine_type: str | None = None


class NearbyServicesInput(PlaceToolInput):
    service_type: str = Field(min_length=1)


class NearbyLandmarksInput(PlaceToolInput):
    landmark_type: str | None = None


class NearbyTransportInput(PlaceToolInput):
    transport_type: str | None = None


class WebSearchInput(BaseModel):
    query: str = Field(min_length=1)
    latitude: float | None = Field(default=None, ge=-90, le=90)
    longitude: float | None = Field(default=None, ge=-180, le=180)


class LegacyToolInput(BaseModel):
    """Parameters are forwarded to the legacy system untouched."""

    model_config = ConfigDict(extra="allow")


class DirectionsInput(LegacyToolInput):
    destination: str = Field(min_length=1)
    mode: str | None = None


class CurrencyInput(LegacyToolInput):
    amount: float
    from_currency: str = Field(min_length=3, max_length=3)
    to_currency: str = Field(min_length=3, max_length=3)


class TranslateInput(LegacyToolInput):
    text: str = Field(min_length=1)
    target_language: str = Field(min_length=1)


_TRANSPORT_QUERIES = {
    "subway": "subway station",
    "metro": "subway station",
    "train": "train station",
    "bus": "bus stop",
    "taxi": "taxi stand",
    "parking": "parking",
    "bike": "bike share station",
}

LEGACY_ONLY_TOOLS: tuple[tuple[str, str, ToolCategory, type[BaseModel]], ...] = (
    ("get_user_location", "Get the user's current location.", ToolCategory.LOCATION, LegacyToolInput),
    ("get_directions", "Get directions to a destination.", ToolCategory.LOCATION, DirectionsInput),
    ("get_weather", "Get the current weather and forecast.", ToolCategory.TRAVEL, LegacyToolInput),
    ("currency_converter", "Convert an amount between currencies.", ToolCategory.TRAVEL, CurrencyInput),
    ("translate_text", "Translate text into another language.", ToolCategory.TRAVEL, TranslateInput),
    (
        "check_travel_requirements",
        "Check visa and entry requirements for a destination.",
        ToolCategory.TRAVEL,
        LegacyToolInput,
    ),
    ("get_safety_info", "Get safety information for the current area.", ToolCategory.SAFETY, LegacyToolInput),
    ("get_emergency_info", "Get local emergency numbers and services.", ToolCategory.SAFETY, LegacyToolInput),
    ("check_calendar", "Check the user's calendar.", ToolCategory.CALENDAR, LegacyToolInput),
    ("get_local_time", "Get the local time at a location.", ToolCategory.CALENDAR, LegacyToolInput),
    ("bikes_nearby", "Find available share bikes nearby.", ToolCategory.TRANSPORT, LegacyToolInput),
    ("docks_nearby", "Find bike docks with free slots nearby.", ToolCategory.TRANSPORT, LegacyToolInput),
    ("reviews_list", "List recent reviews for a place.", ToolCategory.DISCOVERY, LegacyToolInput),
)


def register_builtin_tools(registry: ToolRegistry, pipeline: PlaceSearchPipeline) -> None:
    """Register the tool catalog.

    Migrated tools:
    - `find_nearby_places`, `find_nearby_restaurants`, `find_nearby_services`,
      `find_nearby_landmarks`, `find_nearby_transport`: fused place search.
    - `web_search`: web results, preferring structured places over snippets.

    Every other catalog tool is declared without a handler and is served by
    the legacy system.
    """

    def _place_query(input_data: PlaceToolInput, query: str, subject: str) -> PlaceQuery:
        return PlaceQuery(
            query=query,
            subject=subject,
            origin=input_data.origin(),
            radius_meters=input_data.radius,
            conversation_context=input_data.conversation_context,
        )

    async def _places(input_data: NearbyPlacesInput) -> str:
        subject = input_data.category.replace("_", " ")
        query = _compose(input_data.query, subject)
        return await pipeline.answer(_place_query(input_data, query, subject))

    async def _restaurants(input_data: NearbyRestaurantsInput) -> str:
        focus = input_data.query or input_data.cuisine_type
        query = f"{focus} restaurant" if focus else "restaurants"
        return await pipeline.answer(_place_query(input_data, query, "restaurants"))

    async def _services(input_data: NearbyServicesInput) -> str:
        subject = input_data.service_type.replace("_", " ")
        query = _compose(input_data.query, subject)
        return await pipeline.answer(_place_query(input_data, query, subject))

    async def _landmarks(input_data: NearbyLandmarksInput) -> str:
        subject = input_data.landmark_type or "landmarks"
        query = _compose(input_data.query, subject)
        return await pipeline.answer(_place_query(input_data, query, subject))

    async def _transport(input_data: NearbyTransportInput) -> str:
        kind = (input_data.transport_type or "").lower()
        subject = _TRANSPORT_QUERIES.get(kind, "public transport")
        query = _compose(input_data.query, subject)
        return await pipeline.answer(_place_query(input_data, query, f"{subject} options"))

    async def _web(input_data: WebSearchInput) -> str:
        origin = None
        if input_data.latitude is not None and input_data.longitude is not None:
            origin = GeoPoint(latitude=input_data.latitude, longitude=input_data.longitude)
        return await pipeline.web_answer(input_data.query, origin)

    migrated = (
        ("find_nearby_places", "Find nearby places of a given category.", NearbyPlacesInput, _places),
        (
            "find_nearby_restaurants",
            "Find nearby restaurants, optionally by cuisine.",
            NearbyRestaurantsInput,
            _restaurants,
        ),
        ("find_nearby_services", "Find nearby services such as pharmacies or ATMs.", NearbyServicesInput, _services),
        ("find_nearby_landmarks", "Find nearby landmarks and attractions.", NearbyLandmarksInput, _landmarks),
        ("find_nearby_transport", "Find nearby public transport stops and stations.", NearbyTransportInput, _transport),
    )
    for name, description, schema, handler in migrated:
        registry.register(
            ToolDefinition(
                name=name,
                description=description,
                category=ToolCategory.LOCATION,
                args_schema=schema,
                handler=handler,
            )
        )
    registry.register(
        ToolDefinition(
            name="web_search",
            description="Search the web for current information.",
            category=ToolCategory.SEARCH,
            args_schema=WebSearchInput,
            handler=_web,
        )
    )
    for name, description, category, schema in LEGACY_ONLY_TOOLS:
        registry.register(
            ToolDefinition(name=name, description=description, category=category, args_schema=schema)
        )


def _compose(query: str | None, subject: str) -> str:
    return f"{query} {subject}".strip() if query else subject
