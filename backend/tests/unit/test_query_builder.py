"""
Tests for search filter construction, pagination and wire parsing
"""
import pytest

from backend.services.common.errors import ValidationError
from backend.services.common.models import TimeOfDay
from backend.services.search.filters import And, Contains, Equals, Exists, MatchAll, Near, Or, Range
from backend.services.search.query_builder import (
    MAX_PAGE, BrowseSearch, CoordinateSearch, NameSearch, PrayerTimeSearch, SortPolicy, build_filter,
    clamp_page, make_search, paginate, parse_search_params, resolve_sort, search_to_params,
)
from backend.services.search.time_window import compute_window

GEO = {"longitude": -0.09, "latitude": 51.5, "radius_meters": 1000}


def prayer_search(slot, start, end, **extra):
    return make_search(by="prayerTime", prayer_name=slot, start=TimeOfDay.parse(start),
                       end=TimeOfDay.parse(end), **extra)


def doc_with(slot, hours, minutes):
    return {"name": "Test", "prayer_times": {slot: {"hours": hours, "minutes": minutes}}}


class TestTextModes:
    """name and location searches"""

    def test_name_is_single_contains_leaf(self):
        assert build_filter(make_search(by="name", query="Central")) == Contains("name", "Central")

    def test_location_is_single_contains_leaf(self):
        assert build_filter(make_search(by="location", query="Brick")) == Contains("location", "Brick")

    def test_query_is_trimmed(self):
        assert make_search(by="name", query="  Central ").query == "Central"

    @pytest.mark.parametrize("query", ["", "   "])
    def test_empty_query_rejected(self, query):
        with pytest.raises(ValidationError):
            make_search(by="name", query=query)

    def test_name_with_secondary_geo_is_conjunction(self):
        expression = build_filter(make_search(by="name", query="Central", geo=GEO))
        assert expression == And((Contains("name", "Central"), Near(-0.09, 51.5, 1000)))


class TestCoordinateMode:
    """Proximity search with and without an attribute query"""

    def test_geo_alone_is_not_wrapped(self):
        expression = build_filter(make_search(by="coordinates", geo=GEO))
        assert isinstance(expression, Near)
        assert expression == Near(longitude=-0.09, latitude=51.5, radius_meters=1000)

    def test_geo_with_name_query_is_conjunction(self):
        expression = build_filter(make_search(by="coordinates", geo=GEO, query="Central", attribute_mode="name"))
        assert isinstance(expression, And)
        assert expression.operands == (Contains("name", "Central"), Near(-0.09, 51.5, 1000))

    def test_geo_with_location_query(self):
        expression = build_filter(make_search(by="coordinates", geo=GEO, query="Road", attribute_mode="location"))
        assert expression.operands[0] == Contains("location", "Road")

    def test_blank_attribute_query_means_geo_only(self):
        assert isinstance(build_filter(make_search(by="coordinates", geo=GEO, query="  ")), Near)

    def test_default_radius(self):
        search = make_search(by="coordinates", geo={"longitude": -0.09, "latitude": 51.5})
        assert build_filter(search).radius_meters == 5000

    def test_geo_required(self):
        with pytest.raises(ValidationError):
            make_search(by="coordinates")

    def test_coordinates_are_range_checked(self):
        with pytest.raises(ValidationError):
            make_search(by="coordinates", geo={"longitude": 200, "latitude": 51.5})


class TestPrayerTimeMode:
    """Existence leaf plus hour-boundary disjunction"""

    def test_three_clause_decomposition(self):
        expression = build_filter(prayer_search("fajr", "04:00", "05:30"))
        assert isinstance(expression, And)
        exists, window = expression.operands
        assert exists == Exists("prayer_times.fajr")
        assert isinstance(window, Or)
        assert window.operands == (
            And((Equals("prayer_times.fajr.hours", 4), Range("prayer_times.fajr.minutes", gte=0))),
            Range("prayer_times.fajr.hours", gt=4, lt=5),
            And((Equals("prayer_times.fajr.hours", 5), Range("prayer_times.fajr.minutes", lte=30))),
        )

    def test_explicit_range_as_time_strings(self):
        search = make_search(by="prayerTime", prayer_name="fajr", start="04:00", end="05:30")
        assert (str(search.start), str(search.end)) == ("04:00", "05:30")

        expression = build_filter(search)
        exists, window = expression.operands
        assert exists == Exists("prayer_times.fajr")
        assert isinstance(window, Or)
        assert len(window.operands) == 3

    def test_malformed_time_string_rejected(self):
        with pytest.raises(ValidationError):
            make_search(by="prayerTime", prayer_name="fajr", start="4am", end="05:30")

    def test_window_boundaries(self):
        expression = build_filter(prayer_search("fajr", "04:00", "05:30"))
        assert expression.matches(doc_with("fajr", 4, 0))
        assert expression.matches(doc_with("fajr", 5, 30))
        assert not expression.matches(doc_with("fajr", 5, 31))
        assert not expression.matches(doc_with("fajr", 3, 59))

    def test_missing_optional_slot_never_matches(self, mosques):
        brick = mosques["brick"].model_dump()
        assert brick["prayer_times"]["juma"] is None
        for start in ("00:00", "06:00", "12:00", "13:00", "22:30"):
            window = compute_window(start)
            expression = build_filter(prayer_search("juma", str(window.start), str(window.end)))
            assert not expression.matches(brick)

    def test_midnight_crossing_window(self):
        expression = build_filter(prayer_search("isha", "23:30", "01:00"))
        _, window = expression.operands
        assert len(window.operands) == 4
        assert expression.matches(doc_with("isha", 23, 45))
        assert expression.matches(doc_with("isha", 0, 15))
        assert expression.matches(doc_with("isha", 1, 0))
        assert not expression.matches(doc_with("isha", 1, 1))
        assert not expression.matches(doc_with("isha", 23, 29))
        assert not expression.matches(doc_with("isha", 20, 0))

    def test_window_within_one_hour(self):
        expression = build_filter(prayer_search("asr", "16:10", "16:40"))
        assert expression.matches(doc_with("asr", 16, 30))
        assert not expression.matches(doc_with("asr", 16, 45))
        assert not expression.matches(doc_with("asr", 16, 5))

    @pytest.mark.parametrize("start", ["04:00", "09:45", "12:00", "22:45", "23:30"])
    def test_filter_agrees_with_window_membership(self, start):
        window = compute_window(start)
        expression = build_filter(prayer_search("maghrib", str(window.start), str(window.end)))
        for minute_of_day in range(0, 24 * 60, 5):
            hours, minutes = divmod(minute_of_day, 60)
            expected = window.contains(TimeOfDay(hours=hours, minutes=minutes))
            assert expression.matches(doc_with("maghrib", hours, minutes)) is expected

    def test_secondary_geo_is_flattened(self):
        expression = build_filter(prayer_search("fajr", "04:00", "05:30", geo=GEO))
        assert isinstance(expression, And)
        assert [type(op) for op in expression.operands] == [Exists, Or, Near]

    def test_prayer_name_is_case_insensitive(self):
        assert prayer_search("FAJR", "04:00", "05:30").prayer_name == "fajr"

    def test_unknown_prayer_rejected(self):
        with pytest.raises(ValidationError):
            prayer_search("tahajjud", "02:00", "03:30")


class TestBrowse:
    def test_browse_matches_everything(self):
        assert build_filter(make_search(by="all")) == MatchAll()

    def test_browse_near_point_is_geo_leaf(self):
        assert isinstance(build_filter(make_search(by="all", geo=GEO)), Near)


class TestPagination:
    """Fixed page size of 20"""

    def test_first_page(self):
        page = paginate(1)
        assert (page.skip, page.limit) == (0, 20)

    def test_third_page(self):
        page = paginate(3)
        assert (page.skip, page.limit) == (40, 20)

    @pytest.mark.parametrize("page", [0, -1, 1.5, "2", None])
    def test_builder_rejects_unclamped_pages(self, page):
        with pytest.raises(ValidationError):
            paginate(page)

    @pytest.mark.parametrize("raw,expected", [
        (None, 1), ("", 1), ("abc", 1), ("NaN", 1), ("-2", 1), ("0", 1), ("3", 3), (3, 3), ("2.7", 2),
        ("1e20", MAX_PAGE), ("inf", MAX_PAGE), (MAX_PAGE + 1, MAX_PAGE),
    ])
    def test_clamp_page(self, raw, expected):
        assert clamp_page(raw) == expected

    def test_capped_page_offset_fits_database_range(self):
        page = paginate(clamp_page("1e20"))
        assert page.skip == (MAX_PAGE - 1) * 20
        assert page.skip < 2 ** 63

    def test_search_rejects_page_past_cap(self):
        with pytest.raises(ValidationError):
            make_search(by="all", page=MAX_PAGE + 1)

    def test_absent_page_parses_to_first_page(self):
        search = parse_search_params({"by": "name", "query": "x"})
        assert paginate(search.page).skip == 0


class TestSort:
    def test_defaults(self):
        assert resolve_sort(make_search(by="name", query="x")) is SortPolicy.NAME
        assert resolve_sort(make_search(by="coordinates", geo=GEO)) is SortPolicy.DISTANCE

    def test_explicit(self):
        assert resolve_sort(make_search(by="coordinates", geo=GEO, sort="newest")) is SortPolicy.NEWEST

    def test_distance_needs_geo(self):
        with pytest.raises(ValidationError):
            resolve_sort(make_search(by="name", query="x", sort="distance"))


class TestParseSearchParams:
    """Request parameters into SearchFilter"""

    def test_name(self):
        search = parse_search_params({"by": "name", "query": "Central", "page": "2"})
        assert isinstance(search, NameSearch)
        assert search.page == 2

    def test_lat_lng_become_longitude_first_geo(self):
        search = parse_search_params({"by": "coordinates", "lat": "51.5", "lng": "-0.09", "radius": "1000"})
        assert isinstance(search, CoordinateSearch)
        assert (search.geo.longitude, search.geo.latitude) == (-0.09, 51.5)
        assert search.geo.radius_meters == 1000

    def test_configured_default_radius(self):
        search = parse_search_params({"by": "coordinates", "lat": "51.5", "lng": "-0.09"}, default_radius=2500)
        assert search.geo.radius_meters == 2500

    def test_lat_without_lng(self):
        with pytest.raises(ValidationError):
            parse_search_params({"by": "coordinates", "lat": "51.5"})

    def test_non_numeric_coordinate(self):
        with pytest.raises(ValidationError):
            parse_search_params({"by": "coordinates", "lat": "north", "lng": "-0.09"})

    def test_prayer_time_derives_window(self):
        search = parse_search_params({"by": "prayerTime", "query": "Isha", "prayerTime": "23:30"})
        assert isinstance(search, PrayerTimeSearch)
        assert search.prayer_name == "isha"
        assert (str(search.start), str(search.end)) == ("23:30", "01:00")

    def test_prayer_time_with_configured_offset(self):
        search = parse_search_params({"by": "prayerTime", "query": "fajr", "prayerTime": "04:00"}, window_offset=60)
        assert str(search.end) == "05:00"

    def test_time_start_only_runs_to_end_of_day(self):
        search = parse_search_params({"by": "prayerTime", "query": "asr", "timeStart": "15:00"})
        assert (str(search.start), str(search.end)) == ("15:00", "23:59")

    def test_prayer_time_without_time_rejected(self):
        with pytest.raises(ValidationError):
            parse_search_params({"by": "prayerTime", "query": "fajr"})

    def test_default_time_injected_at_call_site(self):
        search = parse_search_params({"by": "prayerTime", "query": "zohar"}, default_time="12:00")
        assert (str(search.start), str(search.end)) == ("12:00", "13:30")

    def test_prayer_time_without_name_rejected(self):
        with pytest.raises(ValidationError):
            parse_search_params({"by": "prayerTime", "prayerTime": "12:00"})

    def test_malformed_prayer_time_rejected(self):
        with pytest.raises(ValidationError):
            parse_search_params({"by": "prayerTime", "query": "fajr", "prayerTime": "25:00"})

    def test_unknown_mode_rejected(self):
        with pytest.raises(ValidationError):
            parse_search_params({"by": "imam", "query": "x"})

    def test_no_mode_is_browse(self):
        assert isinstance(parse_search_params({}), BrowseSearch)

    def test_empty_name_query_rejected(self):
        with pytest.raises(ValidationError):
            parse_search_params({"by": "name"})

    @pytest.mark.parametrize("params", [
        {"by": "name", "query": "Central", "page": "3"},
        {"by": "location", "query": "Brick Lane", "lat": "51.52", "lng": "-0.07", "radius": "750.5"},
        {"by": "coordinates", "lat": "51.5", "lng": "-0.09", "query": "Central", "attributeBy": "location"},
        {"by": "prayerTime", "query": "juma", "prayerTime": "12:45", "sort": "newest"},
        {"by": "prayerTime", "query": "isha", "timeStart": "23:00", "timeEnd": "00:30"},
        {"lat": "51.5", "lng": "-0.09"},
    ])
    def test_reserialised_params_parse_back_to_same_search(self, params):
        search = parse_search_params(params)
        again = parse_search_params(search_to_params(search))
        assert again == search
        assert again.by == search.by
