from pathlib import Path

import pytest

from featuresync.domain.exceptions import MalformedInputError
from featuresync.domain.models import Position, Record
from featuresync.infra.sources.csv_utils import formatEpochDate, formatScalar, parseNull
from featuresync.infra.sources.text_codec import TextCodec, readRecords


def test_decode_reads_header_and_rows():
    codec = TextCodec(id_field="objectid")

    records = codec.decode("objectid,room_name,status\n1,Lab,open\n2,,closed\n")

    assert [r.id for r in records] == ["1", "2"]
    assert records[0].attributes == {"objectid": "1", "room_name": "Lab", "status": "open"}
    assert records[1].get("room_name") is None
    assert all(r.position is None for r in records)


def test_decode_matches_id_column_case_insensitive_and_strips_bom():
    codec = TextCodec(id_field="objectid")

    records = codec.decode("\ufeffOBJECTID,status\r\n7,open\r\n")

    assert len(records) == 1
    assert records[0].id == "7"
    assert "OBJECTID" in records[0].attributes


def test_decode_skips_blank_lines_and_null_values():
    codec = TextCodec()

    records = codec.decode("objectid,status\n\n1,NULL\n\n")

    assert len(records) == 1
    assert records[0].get("status") is None


def test_decode_header_only_gives_empty_list():
    assert TextCodec().decode("objectid,status\n") == []


def test_decode_keeps_quotes_verbatim():
    records = TextCodec().decode('objectid,room_name\n1,"Lab"\n')

    assert records[0].get("room_name") == '"Lab"'


def test_decode_rejects_column_count_mismatch():
    with pytest.raises(MalformedInputError) as exc:
        TextCodec().decode("objectid,room_name,status\n1,Lab,open\n2,Lab\n")

    assert exc.value.line_no == 3
    assert exc.value.code == "MALFORMED_INPUT"


def test_decode_rejects_missing_id_column():
    with pytest.raises(MalformedInputError) as exc:
        TextCodec(id_field="objectid").decode("room_name,status\nLab,open\n")

    assert "objectid" in exc.value.message


def test_decode_rejects_empty_identifier():
    with pytest.raises(MalformedInputError):
        TextCodec().decode("objectid,status\n ,open\n")


def test_decode_rejects_empty_text():
    with pytest.raises(MalformedInputError):
        TextCodec().decode("")


def test_encode_appends_latitude_longitude_from_position():
    codec = TextCodec()
    records = [
        Record(id=1, attributes={"objectid": 1, "room_name": "Lab"}, position=Position(x=13.4, y=52.5)),
        Record(id=2, attributes={"objectid": 2, "room_name": None}, position=None),
    ]

    text = codec.encode(records)

    assert text.split("\n") == [
        "objectid,room_name,latitude,longitude",
        "1,Lab,52.5,13.4",
        "2,,,",
    ]


def test_encode_formats_date_fields():
    codec = TextCodec(date_fields=("CreationDate",))
    records = [Record(id=1, attributes={"objectid": 1, "CreationDate": 1700000000000, "EditDate": 1700000000000})]

    header, row = codec.encode(records).split("\n")

    assert header == "objectid,CreationDate,EditDate,latitude,longitude"
    assert row == "1,11/14/2023,1700000000000,,"


def test_encode_uses_custom_date_format():
    codec = TextCodec(date_fields=("CreationDate",), date_format="%Y-%m-%d")
    records = [Record(id=1, attributes={"objectid": 1, "CreationDate": 1700000000000})]

    assert codec.encode(records).split("\n")[1] == "1,2023-11-14,,"


def test_encode_empty_collection_returns_empty_string():
    assert TextCodec().encode([]) == ""


def test_encode_then_decode_keeps_identifiers_and_values():
    codec = TextCodec()
    records = [Record(id=3, attributes={"objectid": 3, "status": "open"}, position=Position(x=1.5, y=2.5))]

    decoded = codec.decode(codec.encode(records))

    assert decoded[0].id == "3"
    assert decoded[0].get("status") == "open"
    assert decoded[0].get("latitude") == "2.5"


def test_read_records_from_file_with_bom(tmp_path: Path):
    path = tmp_path / "rooms.csv"
    path.write_text("objectid,status\n1,open\n", encoding="utf-8-sig")

    records = readRecords(str(path), TextCodec())

    assert records[0].id == "1"
    assert "objectid" in records[0].attributes


def test_csv_helpers():
    assert parseNull("  x ") == "x"
    assert parseNull("null") is None
    assert formatScalar(None) == ""
    assert formatScalar(True) == "true"
    assert formatScalar(5.0) == "5"
    assert formatScalar(2.25) == "2.25"
    assert formatEpochDate(0) == "1/1/1970"


def test_encode_keeps_out_of_range_date_as_number():
    codec = TextCodec(date_fields=("EditDate",))
    records = [
        Record(id=1, attributes={"objectid": 1, "EditDate": 253402300800000}),
        Record(id=2, attributes={"objectid": 2, "EditDate": -1e20}),
    ]

    lines = codec.encode(records).split("\n")

    assert lines[1] == "1,253402300800000,,"
    assert lines[2] == "2,-100000000000000000000,,"


def test_read_records_rejects_invalid_utf8(tmp_path: Path):
    path = tmp_path / "rooms.csv"
    path.write_bytes(b"objectid,status\n1,caf\xe9\n")

    with pytest.raises(MalformedInputError) as exc:
        readRecords(str(path), TextCodec())

    assert exc.value.code == "MALFORMED_INPUT"
    assert "UTF-8" in exc.value.message
