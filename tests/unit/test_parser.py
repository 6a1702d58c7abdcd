"""Unit tests for listing and status parsing."""

from __future__ import annotations

import json
from collections.abc import Callable
from datetime import datetime

import pytest

from snapdash.models import ParseError, Snapshot, SnapshotType
from snapdash.parser import (
    format_date,
    format_listing,
    format_size,
    parse_date,
    parse_listing,
    parse_size,
    parse_status,
    parse_userdata,
)


class TestParseListing:
    """Tests for the column table form."""

    def test_reads_every_row(self, sample_listing: str) -> None:
        snapshots, skipped = parse_listing(sample_listing)

        assert skipped == 0
        assert [s.id for s in snapshots] == [0, 1, 2, 3]

    def test_fields_are_mapped_by_header(self, sample_listing: str) -> None:
        snapshots, _ = parse_listing(sample_listing)
        first, pre, post = snapshots[1], snapshots[2], snapshots[3]

        assert first.type is SnapshotType.SINGLE
        assert first.date == datetime(2023, 10, 2, 10, 0, 0)
        assert first.user == "root"
        assert first.used_space == 1536 * 1024
        assert first.cleanup_algorithm == "number"
        assert first.description == "first root filesystem"
        assert pre.type is SnapshotType.PRE
        assert pre.userdata == {"important": "yes"}
        assert post.pre_number == 2
        assert post.description == ""

    def test_current_snapshot_has_no_date(self, sample_listing: str) -> None:
        snapshots, _ = parse_listing(sample_listing)

        assert snapshots[0].date is None
        assert snapshots[0].used_space is None
        assert snapshots[0].cleanup_algorithm is None

    def test_number_markers_set_default_and_active(self) -> None:
        text = "# | Type | Description\n1* | single | a\n2+ | single | b\n3- | single | c\n4 | single | d\n"

        snapshots, _ = parse_listing(text)

        assert [(s.default, s.active) for s in snapshots] == [
            (True, True),
            (True, False),
            (False, True),
            (False, False),
        ]

    def test_column_order_is_free(self) -> None:
        text = "Description | Type | #\nhello | pre | 7\n"

        snapshots, skipped = parse_listing(text)

        assert skipped == 0
        assert snapshots[0].id == 7
        assert snapshots[0].type is SnapshotType.PRE
        assert snapshots[0].description == "hello"

    def test_unknown_columns_are_ignored(self) -> None:
        text = "# | Type | Subvolume | Description\n5 | single | /home | x\n"

        snapshots, _ = parse_listing(text)

        assert snapshots[0].id == 5
        assert snapshots[0].description == "x"

    def test_malformed_line_is_skipped_not_fatal(self, sample_listing: str) -> None:
        """A broken row amid valid ones gives a partial parse with a skip count."""
        lines = sample_listing.splitlines()
        lines.insert(3, "this line is garbage")
        lines.insert(5, "x  | single |  |  | root |  |  | bad number |")
        lines.append("9 | weird | | | root | | | unknown type |")

        snapshots, skipped = parse_listing("\n".join(lines))

        assert [s.id for s in snapshots] == [0, 1, 2, 3]
        assert skipped == 3

    def test_box_drawing_table(self) -> None:
        """The table current snapper prints uses box-drawing separators."""
        text = (
            " # │ Type   │ Pre # │ Date                     │ User │ Used Space │ Cleanup │ Description   │ Userdata\n"
            "───┼────────┼───────┼──────────────────────────┼──────┼────────────┼─────────┼───────────────┼─────────────\n"
            "0  │ single │       │                          │ root │            │         │ current       │\n"
            "1* │ single │       │ Mon 02 Oct 2023 10:00:00 │ root │ 1.50 MiB   │ number  │ first root fs │\n"
            "2  │ pre    │       │ 2023-10-03 09:15:00      │ root │ 12.00 KiB  │ number  │ zypp(zypper)  │ important=yes\n"
            "3  │ post   │     2 │ 2023-10-03 09:16:30      │ root │ 4.00 KiB   │ number  │               │ important=yes\n"
        )

        snapshots, skipped = parse_listing(text)

        assert skipped == 0
        assert [s.id for s in snapshots] == [0, 1, 2, 3]
        assert snapshots[1].default and snapshots[1].active
        assert snapshots[1].used_space == 1536 * 1024
        assert snapshots[1].description == "first root fs"
        assert snapshots[2].userdata == {"important": "yes"}
        assert snapshots[3].pre_number == 2

    def test_separator_inside_description_is_kept(self) -> None:
        text = "# | Type | Description | Userdata\n4 | single | before | after │ done | a=b\n"

        snapshots, skipped = parse_listing(text)

        assert skipped == 0
        assert snapshots[0].description == "before | after │ done"
        assert snapshots[0].userdata == {"a": "b"}

    def test_surplus_cells_without_description_column_are_skipped(self) -> None:
        snapshots, skipped = parse_listing("# | Type\n4 | single | extra\n")

        assert snapshots == []
        assert skipped == 1

    def test_bad_pre_number_is_skipped(self) -> None:
        text = "# | Type | Pre # | Description\n3 | post | two | x\n"

        snapshots, skipped = parse_listing(text)

        assert snapshots == []
        assert skipped == 1

    def test_empty_text_raises(self) -> None:
        with pytest.raises(ParseError) as exc_info:
            parse_listing("  \n ")

        assert exc_info.value.reason == "empty listing"

    def test_missing_header_raises(self) -> None:
        with pytest.raises(ParseError) as exc_info:
            parse_listing("snapper: command failed somehow\n")

        assert exc_info.value.reason == "no listing header"
        assert "command failed" in exc_info.value.raw_excerpt

    def test_header_only_gives_empty_listing(self) -> None:
        snapshots, skipped = parse_listing("# | Type | Description\n---+------+------------\n")

        assert snapshots == []
        assert skipped == 0


class TestParseJsonListing:
    """Tests for the ``--jsonout`` form."""

    def test_reads_entries(self) -> None:
        payload = {
            "root": [
                {
                    "number": 0,
                    "default": False,
                    "active": False,
                    "type": "single",
                    "date": "",
                    "user": "root",
                    "description": "current",
                    "userdata": None,
                },
                {
                    "number": 4,
                    "default": True,
                    "active": True,
                    "type": "post",
                    "pre-number": 3,
                    "date": "2024-05-01 08:30:00",
                    "user": "root",
                    "used-space": 4096,
                    "cleanup": "number",
                    "description": "zypp(zypper)",
                    "userdata": {"important": "yes"},
                },
            ]
        }

        snapshots, skipped = parse_listing(json.dumps(payload))

        assert skipped == 0
        assert [s.id for s in snapshots] == [0, 4]
        post = snapshots[1]
        assert post.type is SnapshotType.POST
        assert post.pre_number == 3
        assert post.date == datetime(2024, 5, 1, 8, 30, 0)
        assert post.used_space == 4096
        assert post.cleanup_algorithm == "number"
        assert post.userdata == {"important": "yes"}
        assert post.default and post.active

    def test_bad_entries_are_skipped(self) -> None:
        payload = {"root": [{"number": "x", "type": "single"}, {"number": 2, "type": "single"}, "junk"]}

        snapshots, skipped = parse_listing(json.dumps(payload))

        assert [s.id for s in snapshots] == [2]
        assert skipped == 2

    def test_entries_with_mistyped_fields(self) -> None:
        payload = {
            "root": [
                {"number": 3, "type": "post", "pre-number": "2"},
                {"number": 4, "type": "post", "pre-number": True},
                {"number": 5, "type": "single", "cleanup": 7},
            ]
        }

        snapshots, skipped = parse_listing(json.dumps(payload))

        assert [s.id for s in snapshots] == [5]
        assert skipped == 2
        assert snapshots[0].cleanup_algorithm is None

    def test_invalid_json_raises(self) -> None:
        with pytest.raises(ParseError):
            parse_listing('{"root": [')


class TestRoundTrip:
    """Formatting a listing and parsing it back preserves the records."""

    def test_format_then_parse(self, make_snapshot: Callable[..., Snapshot]) -> None:
        originals = [
            make_snapshot(0, date=None, description="current"),
            make_snapshot(1, used_space=1536 * 1024, cleanup_algorithm="number", default=True, active=True),
            make_snapshot(2, type=SnapshotType.PRE, description="zypp(zypper)", userdata={"important": "yes"}),
            make_snapshot(3, type=SnapshotType.POST, pre_number=2, description="", user="admin"),
            make_snapshot(4, used_space=512, active=True, description="before upgrade"),
        ]

        snapshots, skipped = parse_listing(format_listing(originals))

        assert skipped == 0
        assert snapshots == originals

    def test_description_with_separator_survives(self, make_snapshot: Callable[..., Snapshot]) -> None:
        originals = [make_snapshot(4, description="before | after", userdata={"k": "v"})]

        snapshots, skipped = parse_listing(format_listing(originals))

        assert skipped == 0
        assert snapshots == originals

    def test_description_padding_is_trimmed(self, make_snapshot: Callable[..., Snapshot]) -> None:
        snapshots, _ = parse_listing(format_listing([make_snapshot(4, description="  padded ")]))

        assert snapshots[0].description == "padded"

    def test_format_empty_listing_is_parseable(self) -> None:
        snapshots, skipped = parse_listing(format_listing([]))

        assert snapshots == []
        assert skipped == 0


class TestScalars:
    @pytest.mark.parametrize(
        ("text", "expected"),
        [
            ("2023-10-02 10:00:00", datetime(2023, 10, 2, 10, 0, 0)),
            ("2023-10-02T10:00:00", datetime(2023, 10, 2, 10, 0, 0)),
            ("Mon 02 Oct 2023 10:00:00 AM CEST", datetime(2023, 10, 2, 10, 0, 0)),
            ("Mon 02 Oct 2023 10:00:00 PM", datetime(2023, 10, 2, 22, 0, 0)),
            ("Mon 02 Oct 2023 22:00:00 UTC", datetime(2023, 10, 2, 22, 0, 0)),
            ("Mon Oct  2 10:00:00 2023", datetime(2023, 10, 2, 10, 0, 0)),
            ("", None),
            ("yesterday", None),
        ],
    )
    def test_parse_date(self, text: str, expected: datetime | None) -> None:
        assert parse_date(text) == expected

    def test_format_date(self) -> None:
        assert format_date(datetime(2024, 1, 2, 3, 4, 5)) == "2024-01-02 03:04:05"
        assert format_date(None) == ""

    @pytest.mark.parametrize(
        ("text", "expected"),
        [
            ("512 B", 512),
            ("1.50 KiB", 1536),
            ("2 MiB", 2 * 1024**2),
            ("12K", 12 * 1024),
            ("1,5 GiB", 3 * 1024**3 // 2),
            ("", None),
            ("lots", None),
        ],
    )
    def test_parse_size(self, text: str, expected: int | None) -> None:
        assert parse_size(text) == expected

    @pytest.mark.parametrize(
        ("num_bytes", "expected"),
        [
            (0, "0 B"),
            (1023, "1023 B"),
            (1024, "1.00 KiB"),
            (1536 * 1024, "1.50 MiB"),
            (5 * 1024**4, "5.00 TiB"),
        ],
    )
    def test_format_size(self, num_bytes: int, expected: str) -> None:
        assert format_size(num_bytes) == expected

    def test_parse_userdata(self) -> None:
        assert parse_userdata("important=yes, note = a b") == {"important": "yes", "note": "a b"}
        assert parse_userdata("") == {}
        assert parse_userdata("noequals") == {}


class TestParseStatus:
    def test_diff_lines_are_collected(self) -> None:
        text = "c..... /etc/fstab\n+..... /etc/new.conf\n-..... /var/old\n"

        fields = parse_status(text)

        assert fields["changed_files"] == "3"
        assert fields["changes"].splitlines() == ["c..... /etc/fstab", "+..... /etc/new.conf", "-..... /var/old"]

    def test_key_value_lines_are_normalized(self) -> None:
        text = "Used Space: 1.50 MiB\nCleanup = number\nPre #: 2\n"

        fields = parse_status(text)

        assert fields == {"used_space": "1.50 MiB", "cleanup": "number", "pre": "2"}

    def test_mixed_output(self) -> None:
        fields = parse_status("Description: before upgrade\nc..... /etc/hosts\n")

        assert fields["description"] == "before upgrade"
        assert fields["changed_files"] == "1"

    def test_no_fields_raises(self) -> None:
        with pytest.raises(ParseError):
            parse_status("???\n!!!\n")
