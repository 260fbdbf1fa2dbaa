"""
Test Suite for the Report Parser Components
===========================================
Unit tests for models, image scanning, entity mapping, text fallback,
report assembly and validation.
"""

from __future__ import annotations

import pytest

from conftest import (
    FIRST_IMAGE_OBJECT,
    ICON_DATA,
    JPEG_DATA,
    image_object,
    make_pdf,
)
from ultrasound_parser.entity_mapper import (
    DEFAULT_ALIAS_TABLE,
    AliasTable,
    EntityFieldMapper,
    FieldAlias,
    to_percent,
)
from ultrasound_parser.image_extractor import (
    ImageScanner,
    classify_filter,
    find_image_references,
    format_bytes,
    open_pdf,
    validate_image_data,
)
from ultrasound_parser.models import (
    NOT_DETECTED,
    CanonicalReport,
    EntityRecord,
    ExtractedDocument,
    FieldValue,
    ImageFormat,
    ImageReference,
    PageInfo,
    RawImageRecord,
    TextSections,
)
from ultrasound_parser.pdf_objects import ObjectCursor, PdfKind, PdfValue
from ultrasound_parser.report_builder import build_report, is_empty
from ultrasound_parser.sections import MAX_SECTION_LENGTH, extract_sections
from ultrasound_parser.validator import (
    FileValidator,
    is_valid_date,
    is_valid_uuid,
    sanitize_string,
    validate_pagination_params,
    validate_search_params,
)


# ═══════════════════════════════════════════════════════════════════════════════
# MODEL TESTS
# ═══════════════════════════════════════════════════════════════════════════════


class TestWireModels:
    """camelCase wire shape."""

    def test_report_defaults_to_sentinel(self):
        report = CanonicalReport()
        wire = report.to_wire()
        assert wire["patient"]["name"] == NOT_DETECTED
        assert wire["clinical"]["measurements"] == NOT_DETECTED
        assert set(wire["owner"]) == {"name", "phone", "email", "address"}

    def test_camel_case_keys(self):
        report = CanonicalReport(raw_text="abc", processing_time=12)
        wire = report.to_wire()
        assert wire["rawText"] == "abc"
        assert wire["processingTime"] == 12
        assert "pagesProcessed" in wire["processingMetadata"]
        assert "raw_text" not in wire

    def test_none_fields_omitted(self):
        wire = CanonicalReport().to_wire()
        assert "id" not in wire
        assert "deletedAt" not in wire

    def test_round_trip_from_wire(self):
        report = CanonicalReport(id="abc", raw_text="text")
        restored = CanonicalReport.model_validate(report.to_wire())
        assert restored.id == "abc"
        assert restored.raw_text == "text"

    def test_raw_image_payload_not_serialized(self):
        record = RawImageRecord(
            index=0, data=b"\xff" * 10, width=1, height=1,
            format=ImageFormat.JPG, byte_size=10, xref=7,
        )
        wire = record.to_wire()
        assert "data" not in wire
        assert "xref" not in wire
        assert wire["byteSize"] == 10
        assert wire["format"] == "jpg"


class TestEntityRecord:

    def test_from_raw_wire_names(self):
        entity = EntityRecord.from_raw(
            {"type": "Patient", "mentionText": "Luna", "confidence": 0.9}
        )
        assert entity.type_label == "Patient"
        assert entity.text == "Luna"
        assert entity.confidence == 0.9

    def test_from_raw_snake_names(self):
        entity = EntityRecord.from_raw(
            {"type_": "Owner", "mention_text": "Ana", "confidence": "0.5"}
        )
        assert entity.type_label == "Owner"
        assert entity.text == "Ana"
        assert entity.confidence == 0.5

    def test_from_raw_clamps_confidence(self):
        assert EntityRecord.from_raw({"type": "x", "confidence": 1.7}).confidence == 1.0
        assert EntityRecord.from_raw({"type": "x", "confidence": -2}).confidence == 0.0
        assert EntityRecord.from_raw({"type": "x", "confidence": "bad"}).confidence == 0.0

    def test_from_raw_missing_fields(self):
        entity = EntityRecord.from_raw({})
        assert entity.type_label == ""
        assert entity.text == ""
        assert entity.confidence == 0.0


# ═══════════════════════════════════════════════════════════════════════════════
# PDF OBJECT CURSOR TESTS
# ═══════════════════════════════════════════════════════════════════════════════


class TestPdfValue:

    def test_name(self):
        assert PdfValue(PdfKind.NAME, "/Image").as_name() == "Image"
        assert PdfValue(PdfKind.NUMBER, "3").as_name() is None

    def test_number(self):
        assert PdfValue(PdfKind.NUMBER, "200").as_number() == 200
        assert PdfValue(PdfKind.NAME, "/X").as_number(default=-1) == -1

    def test_reference(self):
        assert PdfValue(PdfKind.REFERENCE, "9 0 R").as_reference() == 9
        assert PdfValue(PdfKind.NAME, "/X").as_reference() is None

    def test_names_from_array(self):
        value = PdfValue(PdfKind.ARRAY, "[/FlateDecode/DCTDecode]")
        assert value.names() == ["FlateDecode", "DCTDecode"]
        assert PdfValue(PdfKind.NAME, "/DCTDecode").names() == ["DCTDecode"]
        assert PdfValue(PdfKind.NULL, "null").names() == []


class TestObjectCursor:

    def test_classifies_objects(self, report_pdf):
        with open_pdf(report_pdf) as doc:
            cursor = ObjectCursor(doc)
            assert cursor.kind_of(1) is PdfKind.DICTIONARY
            assert cursor.kind_of(FIRST_IMAGE_OBJECT) is PdfKind.STREAM
            assert cursor.get(FIRST_IMAGE_OBJECT, "Subtype").as_name() == "Image"
            assert cursor.get(FIRST_IMAGE_OBJECT, "Missing").is_null

    def test_raw_stream_is_undecoded(self, report_pdf):
        with open_pdf(report_pdf) as doc:
            assert ObjectCursor(doc).raw_stream(FIRST_IMAGE_OBJECT) == JPEG_DATA

    def test_resolves_indirect_number(self):
        pdf = make_pdf(
            [image_object(JPEG_DATA, width=f"{FIRST_IMAGE_OBJECT + 1} 0 R")],
            extra=[b"240"],
        )
        with open_pdf(pdf) as doc:
            cursor = ObjectCursor(doc)
            assert cursor.get(FIRST_IMAGE_OBJECT, "Width").kind is PdfKind.REFERENCE
            assert cursor.get_resolved(FIRST_IMAGE_OBJECT, "Width").as_number() == 240


# ═══════════════════════════════════════════════════════════════════════════════
# IMAGE SCANNER TESTS
# ═══════════════════════════════════════════════════════════════════════════════


class TestImageScanner:

    def test_keeps_large_image_drops_icon(self, report_pdf):
        images = ImageScanner().scan(report_pdf)
        assert len(images) == 1
        image = images[0]
        assert image.index == 0
        assert image.width == 200
        assert image.height == 300
        assert image.format is ImageFormat.JPG
        assert image.byte_size == len(JPEG_DATA)
        assert image.data == JPEG_DATA

    def test_indices_are_dense_and_ordered(self):
        second = b"\x89PNG\r\n\x1a\n" + b"\x02" * 3000
        pdf = make_pdf([
            image_object(JPEG_DATA),
            image_object(ICON_DATA, width="20", height="20"),
            image_object(second, width="640", height="480", pdf_filter="/FlateDecode"),
        ])
        images = ImageScanner().scan(pdf)
        assert [i.index for i in images] == [0, 1]
        assert images[1].format is ImageFormat.PNG
        assert images[1].data == second

    def test_bounds_are_exclusive(self):
        pdf = make_pdf([
            image_object(JPEG_DATA, width="50", height="300"),
            image_object(b"\xff" * 1000),
            image_object(b"\xff" * 1001, width="51", height="51"),
        ])
        images = ImageScanner().scan(pdf)
        assert len(images) == 1
        assert (images[0].width, images[0].height, images[0].byte_size) == (51, 51, 1001)

    def test_missing_width_rejected(self):
        pdf = make_pdf([image_object(JPEG_DATA, width=None)])
        assert ImageScanner().scan(pdf) == []

    def test_indirect_dimension(self):
        pdf = make_pdf(
            [image_object(JPEG_DATA, width=f"{FIRST_IMAGE_OBJECT + 1} 0 R")],
            extra=[b"240"],
        )
        images = ImageScanner().scan(pdf)
        assert len(images) == 1
        assert images[0].width == 240

    def test_unreferenced_image_is_found(self):
        pdf = make_pdf([], extra=[image_object(JPEG_DATA)])
        images = ImageScanner().scan(pdf)
        assert len(images) == 1
        assert images[0].xref == FIRST_IMAGE_OBJECT

    def test_image_dictionary_without_stream_skipped(self):
        pdf = make_pdf(
            [],
            extra=[b"<< /Type /XObject /Subtype /Image /Width 200 /Height 300 >>"],
        )
        assert ImageScanner().scan(pdf) == []

    def test_filter_chain_with_dct_is_jpeg(self):
        pdf = make_pdf([image_object(JPEG_DATA, pdf_filter="[/FlateDecode /DCTDecode]")])
        images = ImageScanner().scan(pdf)
        assert images[0].format is ImageFormat.JPG

    def test_scan_is_idempotent(self, report_pdf):
        scanner = ImageScanner()
        first = [(i.index, i.xref, i.byte_size) for i in scanner.scan(report_pdf)]
        second = [(i.index, i.xref, i.byte_size) for i in scanner.scan(report_pdf)]
        assert first == second

    @pytest.mark.parametrize("data", [b"", b"not a pdf at all", b"%PDF-1.4\ngarbage"])
    def test_malformed_input_yields_empty(self, data):
        assert ImageScanner().scan(data) == []

    def test_custom_thresholds(self, report_pdf):
        images = ImageScanner(min_bytes=100, min_dimension=10).scan(report_pdf)
        assert len(images) == 2


class TestImageHelpers:

    def test_classify_filter(self):
        assert classify_filter(["DCTDecode"]) is ImageFormat.JPG
        assert classify_filter(["FlateDecode", "DCTDecode"]) is ImageFormat.JPG
        assert classify_filter(["FlateDecode"]) is ImageFormat.PNG
        assert classify_filter([]) is ImageFormat.PNG

    def test_validate_image_data(self):
        assert validate_image_data(b"\xff\xd8\xff\xe0\x00\x10JF").format is ImageFormat.JPG
        assert validate_image_data(b"\x89PNG\r\n\x1a\n").format is ImageFormat.PNG
        assert validate_image_data(b"GIF89a\x00\x00").format is ImageFormat.GIF

    def test_validate_image_data_defaults_to_jpeg(self):
        sniff = validate_image_data(b"\x00" * 16)
        assert sniff.valid
        assert sniff.format is ImageFormat.JPG

    def test_validate_image_data_too_short(self):
        assert not validate_image_data(b"\xff\xd8").valid
        assert not validate_image_data(None).valid

    def test_format_bytes(self):
        assert format_bytes(0) == "0 Bytes"
        assert format_bytes(500) == "500 Bytes"
        assert format_bytes(1024) == "1 KB"
        assert format_bytes(6000) == "5.86 KB"
        assert format_bytes(5 * 1024 * 1024) == "5 MB"

    def test_find_image_references(self, report_pdf):
        refs = find_image_references(report_pdf)
        assert {r.name for r in refs} == {"Im1", "Im2"}
        assert all(r.page == 1 for r in refs)

    def test_find_image_references_bad_input(self):
        assert find_image_references(b"junk") == []


# ═══════════════════════════════════════════════════════════════════════════════
# ENTITY MAPPER TESTS
# ═══════════════════════════════════════════════════════════════════════════════


def _entity(label, text, confidence=0.9):
    return EntityRecord(type_label=label, text=text, confidence=confidence)


class TestAliasTable:

    def test_default_table_covers_schema(self):
        assert len(DEFAULT_ALIAS_TABLE) == 19
        assert "veterinarian.clinic" in DEFAULT_ALIAS_TABLE.fields()

    def test_case_insensitive(self):
        assert DEFAULT_ALIAS_TABLE.match("PATIENT NAME").key == "patient.name"
        assert DEFAULT_ALIAS_TABLE.match("especie").key == "patient.species"

    def test_bidirectional_substring(self):
        # label contains alias
        assert DEFAULT_ALIAS_TABLE.match("Owner Full Name").key == "owner.name"
        # alias contains label
        assert DEFAULT_ALIAS_TABLE.match("Tratamient").key == "clinical.recommendations"

    def test_first_match_wins(self):
        assert DEFAULT_ALIAS_TABLE.match("Patient Age").key == "patient.name"

    def test_no_match(self):
        assert DEFAULT_ALIAS_TABLE.match("Invoice Total") is None

    def test_empty_label_matches_nothing(self):
        assert DEFAULT_ALIAS_TABLE.match("") is None
        assert DEFAULT_ALIAS_TABLE.match("   ") is None

    def test_duplicate_entries_rejected(self):
        with pytest.raises(ValueError):
            AliasTable([
                FieldAlias("patient", "name", ("Patient",)),
                FieldAlias("patient", "name", ("Paciente",)),
            ])


class TestEntityFieldMapper:

    def test_maps_into_sections(self):
        mapped = EntityFieldMapper().map_entities([
            _entity("Patient", "Luna", 0.95),
            _entity("Raza", "Labrador", 0.8),
            _entity("Veterinario", "Dr. Ruiz", 0.9),
        ])
        assert mapped["patient"]["name"] == FieldValue(value="Luna", confidence=95)
        assert mapped["patient"]["breed"].value == "Labrador"
        assert mapped["veterinarian"]["name"].value == "Dr. Ruiz"
        assert "owner" not in mapped

    def test_first_value_kept_regardless_of_confidence(self):
        mapped = EntityFieldMapper().map_entities([_entity("Species", "Felino", 0.1)])
        assert mapped["patient"]["species"].value == "Felino"
        assert mapped["patient"]["species"].confidence == 10

    def test_overwrite_requires_strictly_higher_than_threshold(self):
        mapper = EntityFieldMapper()
        mapped = mapper.map_entities([
            _entity("Species", "Canino", 0.9),
            _entity("Especie", "Felino", 0.70),
        ])
        assert mapped["patient"]["species"].value == "Canino"

        mapped = mapper.map_entities([
            _entity("Species", "Canino", 0.9),
            _entity("Especie", "Felino", 0.71),
        ])
        assert mapped["patient"]["species"].value == "Felino"

    def test_arrival_order_decides_conflicts(self):
        mapper = EntityFieldMapper()
        mapped = mapper.map_entities([
            _entity("Weight", "10 kg", 0.5),
            _entity("Peso", "12 kg", 0.9),
        ])
        assert mapped["patient"]["weight"].value == "12 kg"

        mapped = mapper.map_entities([
            _entity("Weight", "10 kg", 0.9),
            _entity("Peso", "12 kg", 0.5),
        ])
        assert mapped["patient"]["weight"].value == "10 kg"

    def test_later_confident_entity_replaces_even_more_confident_one(self):
        mapped = EntityFieldMapper().map_entities([
            _entity("Owner", "Ana", 0.99),
            _entity("Owner", "Luis", 0.75),
        ])
        assert mapped["owner"]["name"].value == "Luis"

    def test_unmatched_entities_ignored(self):
        assert EntityFieldMapper().map_entities([_entity("Invoice", "123")]) == {}

    def test_value_is_trimmed(self):
        mapped = EntityFieldMapper().map_entities([_entity("Email", "  a@b.co \n")])
        assert mapped["owner"]["email"].value == "a@b.co"

    def test_custom_threshold(self):
        mapped = EntityFieldMapper(overwrite_threshold=0.95).map_entities([
            _entity("Age", "3 years", 0.5),
            _entity("Edad", "4 years", 0.9),
        ])
        assert mapped["patient"]["age"].value == "3 years"

    @pytest.mark.parametrize("confidence,expected", [
        (0.0, 0), (0.125, 13), (0.5, 50), (0.875, 88), (0.999, 100), (1.0, 100),
    ])
    def test_to_percent(self, confidence, expected):
        assert to_percent(confidence) == expected


# ═══════════════════════════════════════════════════════════════════════════════
# TEXT FALLBACK TESTS
# ═══════════════════════════════════════════════════════════════════════════════


class TestExtractSections:

    def test_english_sections(self):
        sections = extract_sections(
            "Patient: Luna\nDiagnosis: Mild hepatomegaly\n"
            "Recommendations: Repeat in 30 days\n"
        )
        assert sections.patient == "Luna"
        assert sections.diagnosis == "Mild hepatomegaly"
        assert sections.recommendations == "Repeat in 30 days"

    def test_spanish_sections(self):
        sections = extract_sections(
            "PACIENTE: Max\nDIAGNÓSTICO: Cistitis\nTRATAMIENTO: Antibiótico\n"
        )
        assert sections.patient == "Max"
        assert sections.diagnosis == "Cistitis"
        assert sections.recommendations == "Antibiótico"

    def test_missing_sections_are_empty(self):
        sections = extract_sections("Nothing relevant here")
        assert sections == TextSections()

    def test_diagnosis_runs_to_end_without_recommendations(self):
        sections = extract_sections("Hallazgos: riñón izquierdo aumentado")
        assert sections.diagnosis == "riñón izquierdo aumentado"
        assert sections.recommendations == ""

    def test_length_capped(self):
        sections = extract_sections("Diagnosis: " + "x" * 2000)
        assert len(sections.diagnosis) == MAX_SECTION_LENGTH

    @pytest.mark.parametrize("text", [None, "", 42])
    def test_non_text_input(self, text):
        assert extract_sections(text) == TextSections()


# ═══════════════════════════════════════════════════════════════════════════════
# REPORT BUILDER TESTS
# ═══════════════════════════════════════════════════════════════════════════════


def _image_ref(index):
    return ImageReference(index=index, url=f"/uploads/i{index}", path=f"i{index}")


class TestBuildReport:

    def test_mapped_value_wins_over_fallback(self):
        report = build_report(
            ExtractedDocument(text="t"),
            {"clinical": {"diagnosis": FieldValue(value="Mapped", confidence=90)}},
            TextSections(diagnosis="From text"),
        )
        assert report.clinical.diagnosis == "Mapped"

    def test_text_section_never_overwrites_entity(self):
        text = "Diagnóstico: Nefropatía crónica\nRecomendaciones: Dieta renal"
        mapped = EntityFieldMapper().map_entities(
            [_entity("Diagnóstico", "Litiasis renal", 0.6)]
        )
        report = build_report(
            ExtractedDocument(text=text), mapped, extract_sections(text)
        )
        assert report.clinical.diagnosis == "Litiasis renal"
        assert report.clinical.recommendations == "Dieta renal"

    def test_fallback_fills_empty_fields(self):
        report = build_report(
            ExtractedDocument(text="t"),
            {"clinical": {"diagnosis": FieldValue(value="   ", confidence=90)}},
            TextSections(diagnosis="From text", recommendations="Rest"),
        )
        assert report.clinical.diagnosis == "From text"
        assert report.clinical.recommendations == "Rest"

    def test_fallback_only_for_clinical_fields(self):
        report = build_report(
            ExtractedDocument(), {}, TextSections(patient="Luna")
        )
        assert report.patient.name == NOT_DETECTED

    def test_every_field_populated(self):
        wire = build_report(ExtractedDocument(), {}, TextSections()).to_wire()
        for section in ("patient", "owner", "veterinarian", "study", "clinical"):
            for value in wire[section].values():
                assert value == NOT_DETECTED

    def test_images_sorted_by_index(self):
        report = build_report(
            ExtractedDocument(), {}, TextSections(),
            [_image_ref(2), _image_ref(0), _image_ref(1)],
        )
        assert [i.index for i in report.images] == [0, 1, 2]

    def test_processing_metadata(self):
        document = ExtractedDocument(
            text="hello",
            entities=[_entity("Patient", "Luna")],
            pages=[PageInfo(page_number=1), PageInfo(page_number=2)],
        )
        metadata = build_report(document, {}, TextSections()).processing_metadata
        assert metadata.pages_processed == 2
        assert metadata.entities_detected == 1
        assert metadata.text_length == 5

    def test_pages_processed_at_least_one(self):
        report = build_report(ExtractedDocument(), {}, TextSections())
        assert report.processing_metadata.pages_processed == 1

    def test_is_empty(self):
        assert is_empty(None)
        assert is_empty("")
        assert is_empty("  ")
        assert is_empty(NOT_DETECTED)
        assert not is_empty("Luna")


# ═══════════════════════════════════════════════════════════════════════════════
# VALIDATION TESTS
# ═══════════════════════════════════════════════════════════════════════════════


class TestFileValidator:

    def test_valid_pdf(self, report_pdf):
        result = FileValidator().validate(report_pdf, "application/pdf")
        assert result.valid
        assert result.error is None

    def test_no_file(self):
        assert FileValidator().validate(None, "application/pdf").error == "No file was provided"

    def test_wrong_mime_type(self, report_pdf):
        result = FileValidator().validate(report_pdf, "image/png")
        assert not result.valid
        assert "File type not allowed" in result.error

    def test_mime_checked_before_size(self):
        result = FileValidator(max_file_size=1).validate(b"%PDF-xx", "text/plain")
        assert "File type not allowed" in result.error

    def test_size_limit_inclusive(self):
        validator = FileValidator(max_file_size=10)
        assert validator.validate(b"%PDF-12345", "application/pdf").valid
        result = validator.validate(b"%PDF-123456", "application/pdf")
        assert "maximum allowed size" in result.error

    def test_declared_size_used(self):
        result = FileValidator(max_file_size=100).validate(
            b"%PDF-1.4", "application/pdf", size=1000
        )
        assert not result.valid

    def test_empty_file(self):
        result = FileValidator().validate(b"", "application/pdf")
        assert result.error == "The file is empty or corrupt"

    def test_bad_magic(self):
        result = FileValidator().validate(b"<html></html>", "application/pdf")
        assert result.error == "The file is not a valid PDF"


class TestRequestParams:

    def test_uuid(self):
        assert is_valid_uuid("3f2b8c1e-9a4d-4e6f-8b7a-1c2d3e4f5a6b")
        assert not is_valid_uuid("not-a-uuid")
        assert not is_valid_uuid(None)

    def test_sanitize_string(self):
        assert sanitize_string("  <b>Luna</b> ") == "bLuna/b"
        assert sanitize_string(None) == ""
        assert len(sanitize_string("x" * 5000)) == 1000

    def test_is_valid_date(self):
        assert is_valid_date("2024-03-01")
        assert is_valid_date("2024-03-01T10:00:00Z")
        assert not is_valid_date("yesterday")
        assert not is_valid_date(None)

    def test_pagination_defaults(self):
        params = validate_pagination_params({})
        assert params == {"limit": 20, "start_after": None, "page": 1}

    def test_pagination_clamped(self):
        assert validate_pagination_params({"limit": "500"})["limit"] == 100
        assert validate_pagination_params({"limit": "-3"})["limit"] == 1
        assert validate_pagination_params({"limit": "abc"})["limit"] == 20
        assert validate_pagination_params({"startAfter": "bogus"})["start_after"] is None

    def test_search_params(self):
        params = validate_search_params({
            "patientName": " Luna ",
            "dateFrom": "2024-01-01",
            "dateTo": "tomorrow",
        })
        assert params == {
            "patient_name": "Luna",
            "owner_name": "",
            "date_from": "2024-01-01",
            "date_to": None,
        }


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
