"""Unit tests for the generator registry and format metadata."""

import pytest

from services.format.base import FormatGenerator
from services.format.peppol import PeppolBISGenerator
from services.format.registry import (
    GeneratorRegistry,
    build_default_registry,
    formats_by_country,
    get_format_metadata,
)
from services.invoice.model import OutputFormat
from services.shared.config import Settings
from services.shared.errors import UnsupportedFormatError


@pytest.fixture
def registry(settings: Settings) -> GeneratorRegistry:
    return build_default_registry(settings)


class TestGeneratorRegistry:
    """Test format lookup."""

    def test_default_registry_has_every_format(self, registry: GeneratorRegistry) -> None:
        """Should register one generator per output format."""
        assert registry.get_available_formats() == {f.value for f in OutputFormat}
        assert registry.list_formats() == sorted(f.value for f in OutputFormat)

    def test_create_returns_bound_generator(self, registry: GeneratorRegistry) -> None:
        generator = registry.create("peppol-bis")

        assert isinstance(generator, PeppolBISGenerator)
        assert isinstance(generator, FormatGenerator)
        assert generator.pipeline is registry.pipeline

    def test_unknown_format_lists_available(self, registry: GeneratorRegistry) -> None:
        """Should raise UnsupportedFormatError naming the known formats."""
        with pytest.raises(UnsupportedFormatError, match="Available formats: cius-ro, facturx-basic") as exc_info:
            registry.create("edifact")

        assert exc_info.value.format_id == "edifact"

    def test_registries_are_independent(self, settings: Settings) -> None:
        """Should not share state between instances."""
        empty = GeneratorRegistry(settings)
        empty.register(PeppolBISGenerator)

        assert empty.list_formats() == ["peppol-bis"]
        assert len(build_default_registry(settings).list_formats()) == 9

    def test_engine_versions(self, registry: GeneratorRegistry) -> None:
        versions = registry.engine_versions()

        assert versions["ksef"] == "2.0.0"
        assert versions["peppol-bis"] == "1.0.0"

    def test_describe_merges_metadata(self, registry: GeneratorRegistry) -> None:
        described = {entry["format_id"]: entry for entry in registry.describe()}

        facturx = described["facturx-en16931"]
        assert facturx["syntax"] == "PDF+CII"
        assert facturx["mime_type"] == "application/pdf"
        assert facturx["deprecated"] is False
        assert described["fatturapa"]["countries"] == ["IT"]


class TestFormatMetadata:
    """Test metadata lookups."""

    def test_get_format_metadata(self) -> None:
        meta = get_format_metadata("xrechnung-ubl")

        assert meta.display_name == "XRechnung (UBL)"
        assert meta.syntax == "UBL"

    def test_get_unknown_metadata(self) -> None:
        with pytest.raises(UnsupportedFormatError):
            get_format_metadata("unknown")

    def test_formats_by_country(self) -> None:
        """Should include national formats and pan-European ones."""
        german = {meta.id for meta in formats_by_country("de")}
        polish = {meta.id for meta in formats_by_country("PL")}

        assert {"xrechnung-cii", "xrechnung-ubl", "peppol-bis", "facturx-en16931"} <= german
        assert "ksef" in polish
        assert "xrechnung-cii" not in polish
