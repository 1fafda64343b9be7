"""
Tests for the calendar feed ingestor: parsing and bounded fetching.
"""

import pytest
import httpx
from datetime import date, datetime
from decimal import Decimal
from types import SimpleNamespace

from staysync.exceptions import FeedFetchError, FeedParseError
from staysync.services.feed_ingestor import FeedIngestor, parse_feed, normalize_status
from conftest import build_ics, FEED_URL


def _feed(*lines) -> str:
    body = ["BEGIN:VCALENDAR", "VERSION:2.0", "PRODID:-//Test//Feed//EN", *lines, "END:VCALENDAR"]
    return "\r\n".join(body) + "\r\n"


class TestParseFeed:

    def test_all_day_events(self):
        events = parse_feed(build_ics([
            {"uid": "a@airbnb", "start": date(2025, 8, 1), "end": date(2025, 8, 5)},
            {"uid": "b@airbnb", "start": date(2025, 8, 10), "end": date(2025, 8, 12), "summary": "Not available"},
        ]))

        assert [e.external_id for e in events] == ["a@airbnb", "b@airbnb"]
        assert events[0].start_date == date(2025, 8, 1)
        assert events[0].end_date == date(2025, 8, 5)
        assert events[0].status == "confirmed"
        assert events[1].summary == "Not available"

    def test_bytes_input(self):
        content = build_ics([{"uid": "a", "start": date(2025, 8, 1), "end": date(2025, 8, 2)}]).encode("utf-8")

        assert len(parse_feed(content)) == 1

    def test_datetime_values_are_truncated_to_dates(self):
        events = parse_feed(_feed(
            "BEGIN:VEVENT",
            "UID:timed-1",
            "DTSTART:20250801T150000Z",
            "DTEND:20250805T110000Z",
            "END:VEVENT",
        ))

        assert events[0].start_date == date(2025, 8, 1)
        assert events[0].end_date == date(2025, 8, 5)

    def test_missing_dtend_means_one_night(self):
        events = parse_feed(build_ics([{"uid": "one", "start": date(2025, 8, 1), "end": None}]))

        assert events[0].end_date == date(2025, 8, 2)

    def test_duration_is_used_without_dtend(self):
        events = parse_feed(_feed(
            "BEGIN:VEVENT",
            "UID:dur-1",
            "DTSTART;VALUE=DATE:20250801",
            "DURATION:P3D",
            "END:VEVENT",
        ))

        assert events[0].end_date == date(2025, 8, 4)

    @pytest.mark.parametrize("raw,expected", [
        ("CONFIRMED", "confirmed"),
        ("BOOKED", "confirmed"),
        ("CANCELLED", "cancelled"),
        ("TENTATIVE", "tentative"),
    ])
    def test_status_mapping(self, raw, expected):
        events = parse_feed(build_ics([{"uid": "s", "start": date(2025, 8, 1), "end": date(2025, 8, 2), "status": raw}]))

        assert events[0].status == expected

    def test_unknown_or_missing_status_holds_dates(self):
        assert normalize_status(None) == "confirmed"
        assert normalize_status("SOMETHING-NEW") == "confirmed"
        assert normalize_status(" cancelled ") == "cancelled"

    def test_price_property(self):
        events = parse_feed(build_ics([
            {"uid": "p", "start": date(2025, 8, 1), "end": date(2025, 8, 3), "price": "450"},
        ]))

        assert events[0].price == Decimal("450.00")

    def test_unreadable_price_is_ignored(self):
        events = parse_feed(build_ics([
            {"uid": "p", "start": date(2025, 8, 1), "end": date(2025, 8, 3), "price": "n/a"},
        ]))

        assert events[0].price is None

    def test_duplicate_uid_keeps_first(self):
        events = parse_feed(build_ics([
            {"uid": "dup", "start": date(2025, 8, 1), "end": date(2025, 8, 3)},
            {"uid": "dup", "start": date(2025, 9, 1), "end": date(2025, 9, 3)},
        ]))

        assert len(events) == 1
        assert events[0].start_date == date(2025, 8, 1)

    def test_non_event_components_are_ignored(self):
        events = parse_feed(_feed(
            "X-WR-CALNAME:Listing 42",
            "BEGIN:VTODO",
            "UID:todo-1",
            "SUMMARY:Clean",
            "END:VTODO",
            "BEGIN:VEVENT",
            "UID:ev-1",
            "DTSTART;VALUE=DATE:20250801",
            "DTEND;VALUE=DATE:20250802",
            "X-UNKNOWN-PROP:whatever",
            "END:VEVENT",
        ))

        assert [e.external_id for e in events] == ["ev-1"]

    def test_empty_calendar(self):
        assert parse_feed(build_ics([])) == []

    def test_seen_at_is_stamped(self):
        seen = datetime(2025, 1, 1, 12, 0)
        events = parse_feed(build_ics([{"uid": "a", "start": date(2025, 8, 1), "end": date(2025, 8, 2)}]),
                            seen_at=seen)

        assert events[0].last_seen_at == seen


class TestMalformedFeeds:
    """A malformed event fails the whole feed"""

    def test_not_a_calendar(self):
        with pytest.raises(FeedParseError):
            parse_feed("<html><body>Login required</body></html>")

    def test_event_without_uid(self):
        with pytest.raises(FeedParseError):
            parse_feed(_feed(
                "BEGIN:VEVENT",
                "DTSTART;VALUE=DATE:20250801",
                "DTEND;VALUE=DATE:20250802",
                "END:VEVENT",
            ))

    def test_event_ending_before_it_starts(self):
        with pytest.raises(FeedParseError):
            parse_feed(build_ics([
                {"uid": "ok", "start": date(2025, 8, 1), "end": date(2025, 8, 2)},
                {"uid": "bad", "start": date(2025, 8, 5), "end": date(2025, 8, 3)},
            ]))

    def test_zero_length_event(self):
        with pytest.raises(FeedParseError):
            parse_feed(build_ics([{"uid": "zero", "start": date(2025, 8, 5), "end": date(2025, 8, 5)}]))

    @pytest.mark.parametrize("broken_line", [
        "DTEND;VALUE=DATE:2025-13-45",
        "DTEND;VALUE=DATE:notadate",
        "DURATION:P3X",
    ])
    def test_unreadable_end_fails_the_feed(self, broken_line):
        """A broken DTEND must not turn into a one-night booking"""
        with pytest.raises(FeedParseError) as exc_info:
            parse_feed(_feed(
                "BEGIN:VEVENT",
                "UID:good@airbnb",
                "DTSTART;VALUE=DATE:20250701",
                "DTEND;VALUE=DATE:20250704",
                "END:VEVENT",
                "BEGIN:VEVENT",
                "UID:bad-end@airbnb",
                "DTSTART;VALUE=DATE:20250801",
                broken_line,
                "END:VEVENT",
            ))

        assert "bad-end@airbnb" in exc_info.value.detail

    def test_unreadable_start_fails_the_feed(self):
        with pytest.raises(FeedParseError):
            parse_feed(_feed(
                "BEGIN:VEVENT",
                "UID:bad-start@airbnb",
                "DTSTART;VALUE=DATE:20251399",
                "DTEND;VALUE=DATE:20250804",
                "END:VEVENT",
            ))


class TestFetch:

    def _ingestor(self, handler, **kwargs) -> FeedIngestor:
        client = httpx.Client(transport=httpx.MockTransport(handler))
        return FeedIngestor(client=client, timeout=5, **kwargs)

    def _connection(self):
        return SimpleNamespace(id="conn-1", import_url=FEED_URL)

    def test_fetch_parses_events(self, feed_server):
        feed_server.body = build_ics([{"uid": "a", "start": date(2025, 8, 1), "end": date(2025, 8, 4)}])

        events = feed_server.ingestor.fetch(self._connection())

        assert [e.external_id for e in events] == ["a"]
        assert str(feed_server.requests[0].url) == FEED_URL
        assert "User-Agent" in feed_server.requests[0].headers

    def test_http_error_status(self, feed_server):
        feed_server.status_code = 503

        with pytest.raises(FeedFetchError) as exc_info:
            feed_server.ingestor.fetch(self._connection())

        assert "503" in exc_info.value.detail

    def test_timeout_keeps_cause(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        with pytest.raises(FeedFetchError) as exc_info:
            self._ingestor(handler).fetch(self._connection())

        assert isinstance(exc_info.value.__cause__, httpx.TimeoutException)

    def test_connection_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(FeedFetchError) as exc_info:
            self._ingestor(handler).fetch(self._connection())

        assert isinstance(exc_info.value.__cause__, httpx.ConnectError)

    def test_oversized_feed_is_rejected(self):
        body = build_ics([{"uid": f"e{i}", "start": date(2025, 8, 1), "end": date(2025, 8, 2)} for i in range(50)])

        def handler(request):
            return httpx.Response(200, text=body)

        with pytest.raises(FeedFetchError) as exc_info:
            self._ingestor(handler, max_bytes=1024).fetch(self._connection())

        assert "1024" in exc_info.value.detail

    def test_html_instead_of_calendar(self, feed_server):
        feed_server.body = "<html>Not found</html>"

        with pytest.raises(FeedParseError):
            feed_server.ingestor.fetch(self._connection())
