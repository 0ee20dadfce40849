"""Index models: the files table mapping and the metadata blob format."""

import json

import pytest
from sqlalchemy import create_engine, inspect
from sqlmodel import Session, SQLModel

from webimg.models.entities import AssetMetadata, SourceFile

pytestmark = [pytest.mark.fast]


def test_files_table_keeps_historic_column_names(tmp_path):
    """Python attributes is_live/file_metadata map onto the "exists"/"metadata" columns."""
    engine = create_engine(f"sqlite:///{tmp_path / 'models.db'}")
    SQLModel.metadata.create_all(engine, tables=[SourceFile.__table__])
    columns = {c["name"] for c in inspect(engine).get_columns("files")}
    assert columns == {"id", "path", "file_mtime", "date", "metadata", "exists", "processed", "file_date"}

    with Session(engine) as session:
        session.add(SourceFile(path="a/b.jpg", file_mtime=5, file_metadata='{"File": {}}'))
        session.commit()
        row = session.get(SourceFile, 1)
        assert (row.path, row.is_live, row.processed) == ("a/b.jpg", 1, 0)
    engine.dispose()


def test_from_tags_keeps_known_subset():
    """Only the tags used downstream are kept, grouped as older indexes stored them."""
    md = AssetMetadata.from_tags(
        {"MIMEType": "video/quicktime", "LivePhotoAuto": True, "Model": "iPhone", "Unrelated": "x"}
    )
    blob = json.loads(md.to_blob())
    assert set(blob) == {"File", "QuickTime", "EXIF", "Composite", "WebImg"}
    assert blob["File"]["MIMEType"] == "video/quicktime"
    assert blob["QuickTime"]["LivePhotoAuto"] is True
    assert blob["EXIF"]["Model"] == "iPhone"
    assert "Unrelated" not in json.dumps(blob)
    assert md.live_photo_auto is True
    assert md.hdr is None


def test_older_blob_hydrates():
    """A blob without the WebImg group (and with extra groups) still loads."""
    md = AssetMetadata.from_blob('{"File": {"MIMEType": "image/jpeg"}, "XMP": {"Rating": 5}}')
    assert md.file["MIMEType"] == "image/jpeg"
    assert md.webimg == {}
    assert md.hdr is None


def test_blob_edge_cases():
    assert AssetMetadata.from_blob(None) is None
    assert AssetMetadata.from_blob(b'{"WebImg": {"HDR": 1}}').hdr is True
    assert AssetMetadata.from_blob("[]") is None
    with pytest.raises(ValueError):
        AssetMetadata.from_blob("{not json")
