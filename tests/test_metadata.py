import io
from datetime import datetime, UTC

import pytest
from PIL import Image

from filemyphotos.exceptions import MetadataExtractionError
from filemyphotos.metadata.extract import MetadataExtractor, parse_exif_value, exif_date_from
from filemyphotos.models import (
    ImageExif, NoMetadata, Unsupported, metadata_to_json, metadata_from_json,
)

def _jpeg_bytes(exif_datetime=None):
    img = Image.new("RGB", (8, 8), (200, 10, 10))
    buf = io.BytesIO()
    if exif_datetime:
        exif = Image.Exif()
        exif[0x0132] = exif_datetime  # IFD0 DateTime
        img.save(buf, format="JPEG", exif=exif.tobytes())
    else:
        img.save(buf, format="JPEG")
    return buf.getvalue()

def test_skip_rules():
    extractor = MetadataExtractor()
    assert extractor.should_skip_file(".hidden")
    assert extractor.should_skip_file("Thumbs.db")
    assert not extractor.should_skip_file("photo.jpg")
    assert extractor.should_skip_directory("node_modules")
    assert extractor.should_skip_directory(".git")
    assert not extractor.should_skip_directory("2023")

def test_category_lookup():
    extractor = MetadataExtractor()
    assert extractor.category("/x/IMG_1.JPG") == (".jpg", "image")
    assert extractor.category("/x/clip.mov") == (".mov", "video")
    assert extractor.category("/x/notes.pdf") == (".pdf", "document")
    assert extractor.category("/x/data.xyz") == (".xyz", "other")

def test_parse_exif_value():
    dt = parse_exif_value("2021:07:04 10:00:00")
    assert dt is not None and dt.tzinfo is not None
    # Naive EXIF text is local time
    assert dt == datetime(2021, 7, 4, 10, 0, 0).astimezone().astimezone(UTC)

    assert parse_exif_value("2021:07:04 10:00:00.123") == dt
    assert parse_exif_value("2020-01-01T00:00:00+00:00") == datetime(2020, 1, 1, tzinfo=UTC)
    assert parse_exif_value("0000:00:00 00:00:00") is None
    assert parse_exif_value("") is None
    assert parse_exif_value(None) is None

def test_exif_date_priority():
    meta = ImageExif(
        date_time_original=None,
        create_date="garbage",
        date_time_digitized="2019:01:02 03:04:05",
        modify_date="2022:01:01 00:00:00",
    )
    assert exif_date_from(meta) == parse_exif_value("2019:01:02 03:04:05")
    assert exif_date_from(NoMetadata()) is None
    assert exif_date_from(Unsupported("video")) is None

def test_jpeg_exif_date_is_read(tmp_path):
    p = tmp_path / "shot.jpg"
    p.write_bytes(_jpeg_bytes("2021:07:04 10:00:00"))

    rec = MetadataExtractor().extract(p)
    assert rec.category == "image"
    assert rec.mime_type == "image/jpeg"
    assert isinstance(rec.metadata, ImageExif)
    assert rec.exif_date == parse_exif_value("2021:07:04 10:00:00")

def test_jpeg_without_exif(tmp_path):
    p = tmp_path / "plain.jpg"
    p.write_bytes(_jpeg_bytes())

    rec = MetadataExtractor().extract(p)
    assert isinstance(rec.metadata, NoMetadata)
    assert rec.exif_date is None

def test_exif_original_beats_modify(monkeypatch, tmp_path):
    import filemyphotos.metadata.extract as extract_module

    tags = {
        'EXIF DateTimeOriginal': "2018:05:06 07:08:09",
        'Image DateTime': "2022:01:01 00:00:00",
        'Image Make': "TestCam",
    }
    monkeypatch.setattr(extract_module.exifread, "process_file", lambda f, details=False: tags)

    p = tmp_path / "x.jpg"
    p.write_bytes(b"\xff\xd8\xff\xe0fake")

    meta = MetadataExtractor().read_exif(p)
    assert meta.make == "TestCam"
    assert exif_date_from(meta) == parse_exif_value("2018:05:06 07:08:09")

def test_corrupt_exif_gives_no_metadata(monkeypatch, tmp_path):
    import filemyphotos.metadata.extract as extract_module

    def boom(f, details=False):
        raise ValueError("bad IFD")

    monkeypatch.setattr(extract_module.exifread, "process_file", boom)
    p = tmp_path / "broken.jpg"
    p.write_bytes(b"junk")

    assert isinstance(MetadataExtractor().read_exif(p), NoMetadata)

def test_non_image_is_unsupported(tmp_path):
    p = tmp_path / "a.txt"
    p.write_text("hello")

    rec = MetadataExtractor().extract(p)
    assert isinstance(rec.metadata, Unsupported)
    assert rec.category == "document"
    assert rec.mime_type == "text/plain"
    assert rec.size == 5
    assert rec.original_path == str(p)

def test_stat_missing_path(tmp_path):
    with pytest.raises(MetadataExtractionError):
        MetadataExtractor().stat(tmp_path / "gone.jpg")

def test_metadata_json_round_trip():
    meta = ImageExif(date_time_original="2021:07:04 10:00:00", make="Cam", width=10)
    category, back = metadata_from_json(metadata_to_json("image", meta))
    assert category == "image"
    assert back == meta

    category, back = metadata_from_json(metadata_to_json("video", Unsupported("no reader")))
    assert isinstance(back, Unsupported) and back.reason == "no reader"
    assert metadata_from_json(None) == (None, NoMetadata())
