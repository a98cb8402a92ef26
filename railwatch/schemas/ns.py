"""Pydantic schemas for NS API payloads.

The NS feeds are loosely typed JSON with many optional nested fields. Every
record is validated here, with defaults applied for absent or null fields, so
the matching and reconciliation logic only ever sees complete records.
"""

from collections.abc import Iterable
from typing import Any, Self, TypeVar

import structlog
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ModelWrapValidatorHandler,
    ValidationError,
    ValidationInfo,
    field_validator,
    model_validator,
)

logger = structlog.get_logger(__name__)


class MalformedRecordError(ValueError):
    """A feed record is missing fields that cannot be defaulted."""


class NsModel(BaseModel):
    """Base for feed models: unknown keys ignored, nulls fall back to defaults."""

    model_config = ConfigDict(
        extra="ignore",
        populate_by_name=True,
        coerce_numbers_to_str=True,  # UIC codes arrive as numbers or strings
    )

    @model_validator(mode="wrap")
    @classmethod
    def default_bad_fields(cls, data: Any, handler: ModelWrapValidatorHandler[Self]) -> Self:  # noqa: ANN401
        """
        Fall back to field defaults for null or invalid values.

        Explicit nulls are removed up front. Fields that still fail validation
        are dropped and the record is validated once more, so one bad value
        never costs the whole record.
        """
        if not isinstance(data, dict):
            return handler(data)

        data = {key: value for key, value in data.items() if value is not None}
        try:
            return handler(data)
        except ValidationError as e:
            invalid = {error["loc"][0] for error in e.errors() if error["loc"]}
            if not invalid:
                raise
            # Error locations use aliases; input may use either spelling
            invalid |= {name for name, field in cls.model_fields.items() if field.alias in invalid}
            logger.debug("ns_invalid_fields_defaulted", model=cls.__name__, fields=sorted(map(str, invalid)))
            return handler({key: value for key, value in data.items() if key not in invalid})


def _objects_only(v: Any) -> Any:  # noqa: ANN401
    """Keep only the object entries of a list; anything but a list becomes empty."""
    if not isinstance(v, list):
        return []
    return [item for item in v if isinstance(item, dict | BaseModel)]


# ==================== Disruption Feed ====================


class NsSectionStation(NsModel):
    """Station referenced by a publication section."""

    station_code: str = Field(default="", alias="stationCode")


class NsSection(NsModel):
    """Stretch of track a disruption is published for."""

    stations: list[NsSectionStation] = Field(default_factory=list)

    @field_validator("stations", mode="before")
    @classmethod
    def drop_bad_stations(cls, v: Any) -> Any:  # noqa: ANN401
        """Ignore station entries that are not objects."""
        return _objects_only(v)


class NsPublicationSection(NsModel):
    """Wrapper around a section in the disruption feed."""

    section: NsSection = Field(default_factory=NsSection)


class NsTimespan(NsModel):
    """Period in which a disruption applies; timestamps are ISO 8601 strings."""

    start: str | None = None
    end: str | None = None


class NsExpectedDuration(NsModel):
    """Expected duration text, shown to travellers as advice."""

    description: str | None = None


class NsDisruption(NsModel):
    """Disruption from the /disruptions/v3 feed."""

    id: str = ""
    type: str = "DISRUPTION"
    title: str = "Unknown disruption"
    description: str = ""
    phase: str | None = None
    timespans: list[NsTimespan] = Field(default_factory=list)
    expected_duration: NsExpectedDuration | None = Field(default=None, alias="expectedDuration")
    publication_sections: list[NsPublicationSection] = Field(default_factory=list, alias="publicationSections")

    @field_validator("timespans", "publication_sections", mode="before")
    @classmethod
    def drop_bad_entries(cls, v: Any) -> Any:  # noqa: ANN401
        """Ignore timespan and section entries that are not objects."""
        return _objects_only(v)

    @field_validator("type", "title", mode="after")
    @classmethod
    def default_blank_text(cls, v: str, info: ValidationInfo) -> str:
        """Blank type and title fall back to the same defaults as absent ones."""
        if v.strip():
            return v
        return "DISRUPTION" if info.field_name == "type" else "Unknown disruption"

    @field_validator("phase", mode="before")
    @classmethod
    def extract_phase_label(cls, v: Any) -> Any:  # noqa: ANN401
        """Accept either a plain phase string or a ``{"id", "label"}`` object."""
        if isinstance(v, dict):
            return v.get("label") or v.get("id")
        return v

    @property
    def advice(self) -> str:
        """Expected duration description, empty when not published."""
        if self.expected_duration is None:
            return ""
        return self.expected_duration.description or ""

    def station_codes(self) -> list[str]:
        """Every station code mentioned in any publication section, in feed order."""
        return [
            station.station_code
            for publication in self.publication_sections
            for station in publication.section.stations
            if station.station_code
        ]


# ==================== Trip Feed ====================


class NsTripStop(NsModel):
    """Origin, destination or intermediate stop of a trip leg."""

    uic_code: str | None = Field(default=None, alias="uicCode")
    station_code: str | None = Field(default=None, alias="stationCode")
    name: str | None = None


class NsTripLeg(NsModel):
    """One leg of a trip, e.g. a single train ride or a walk between platforms."""

    travel_type: str | None = Field(default=None, alias="travelType")
    origin: NsTripStop = Field(default_factory=NsTripStop)
    destination: NsTripStop = Field(default_factory=NsTripStop)
    stops: list[NsTripStop] = Field(default_factory=list)

    @field_validator("stops", mode="before")
    @classmethod
    def drop_bad_stops(cls, v: Any) -> Any:  # noqa: ANN401
        """Ignore stops that are not objects."""
        return _objects_only(v)


class NsTrip(NsModel):
    """Candidate trip from the reisinformatie trips endpoint."""

    uid: str | None = None
    planned_duration_in_minutes: int = Field(default=0, alias="plannedDurationInMinutes")
    transfers: int = 0
    legs: list[NsTripLeg] = Field(default_factory=list)

    @field_validator("legs", mode="before")
    @classmethod
    def drop_bad_legs(cls, v: Any) -> Any:  # noqa: ANN401
        """Ignore legs that are not objects."""
        return _objects_only(v)


# ==================== Station Feed ====================


class NsStationNames(NsModel):
    """Localized station names (``lang``/``middel``/``kort``)."""

    long: str | None = Field(default=None, alias="lang")
    medium: str | None = Field(default=None, alias="middel")
    short: str | None = Field(default=None, alias="kort")


class NsStation(NsModel):
    """Station from the nsapp-stations feed."""

    code: str = ""
    uic_code: str = Field(default="", alias="UICCode")
    names: NsStationNames = Field(default_factory=NsStationNames, alias="namen")
    synonyms: list[str] = Field(default_factory=list, alias="synoniemen")
    lat: float | None = None
    lng: float | None = None
    country: str = Field(default="NL", alias="land")


# ==================== Parsing ====================


M = TypeVar("M", bound=NsModel)


def _parse_record(raw: Any, model: type[M]) -> M:  # noqa: ANN401
    if not isinstance(raw, dict):
        msg = f"Expected an object for {model.__name__}, got {type(raw).__name__}"
        raise MalformedRecordError(msg)
    try:
        return model.model_validate(raw)
    except ValidationError as e:
        msg = f"Invalid {model.__name__}: {e.error_count()} validation error(s)"
        raise MalformedRecordError(msg) from e


def _parse_disruption(raw: Any) -> NsDisruption:  # noqa: ANN401
    disruption = _parse_record(raw, NsDisruption)
    if not disruption.id:
        msg = "Disruption record has no id"
        raise MalformedRecordError(msg)
    return disruption


def parse_disruptions(records: Iterable[Any]) -> list[NsDisruption]:
    """
    Parse raw disruption feed records, skipping malformed ones.

    A single malformed record is logged and dropped; it never fails the batch.

    Args:
        records: Raw JSON objects from the disruption feed

    Returns:
        Parsed disruptions in feed order
    """
    parsed: list[NsDisruption] = []
    for index, raw in enumerate(records):
        try:
            parsed.append(_parse_disruption(raw))
        except MalformedRecordError as e:
            logger.warning("ns_disruption_record_skipped", index=index, error=str(e))
    return parsed


def parse_trips(records: Iterable[Any]) -> list[NsTrip]:
    """Parse raw trip records, skipping malformed ones."""
    parsed: list[NsTrip] = []
    for index, raw in enumerate(records):
        try:
            parsed.append(_parse_record(raw, NsTrip))
        except MalformedRecordError as e:
            logger.warning("ns_trip_record_skipped", index=index, error=str(e))
    return parsed


def parse_stations(records: Iterable[Any]) -> list[NsStation]:
    """Parse raw station records, skipping malformed ones."""
    parsed: list[NsStation] = []
    for index, raw in enumerate(records):
        try:
            parsed.append(_parse_record(raw, NsStation))
        except MalformedRecordError as e:
            logger.warning("ns_station_record_skipped", index=index, error=str(e))
    return parsed
