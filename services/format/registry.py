"""Registry of format generators and format metadata.

The registry is an explicitly constructed lookup table from format id to generator
class. build_default_registry() populates all supported formats; callers own the
instance and pass it by reference.

Based on:
- Factory Pattern: https://refactoring.guru/design-patterns/factory-method/python
- Registry Pattern: Python Cookbook 3rd Edition, Recipe 9.22
"""

import logging
from typing import Literal

from pydantic import BaseModel

from services.format.base import FormatGenerator
from services.format.facturx import FacturXBasicGenerator, FacturXEN16931Generator
from services.format.fatturapa import FatturaPAGenerator
from services.format.ksef import KSeFGenerator
from services.format.peppol import CIUSROGenerator, NLCIUSGenerator, PeppolBISGenerator
from services.format.xrechnung import XRechnungCIIGenerator, XRechnungUBLGenerator
from services.invoice.model import OutputFormat
from services.shared.config import Settings
from services.shared.errors import UnsupportedFormatError
from services.validation.pipeline import ValidationPipeline

logger = logging.getLogger(__name__)

SyntaxType = Literal["UBL", "CII", "FatturaPA", "KSeF", "PDF+CII"]

EU_PEPPOL_COUNTRIES = (
    "AT", "BE", "BG", "HR", "CY", "CZ", "DK", "EE", "FI", "FR",
    "DE", "GR", "HU", "IE", "IT", "LV", "LT", "LU", "MT", "NL",
    "PL", "PT", "RO", "SK", "SI", "ES", "SE", "NO", "IS", "LI",
)
FACTURX_COUNTRIES = ("FR", "DE", "AT", "CH", "LU", "BE")


class FormatMetadata(BaseModel):
    """Descriptive metadata for one output format."""

    id: str
    display_name: str
    description: str
    countries: list[str]
    syntax: SyntaxType
    mime_type: str = "application/xml"
    file_extension: str = ".xml"


FORMAT_METADATA: dict[str, FormatMetadata] = {
    meta.id: meta
    for meta in (
        FormatMetadata(
            id=OutputFormat.XRECHNUNG_CII.value,
            display_name="XRechnung (CII)",
            description="German e-invoicing standard based on UN/CEFACT Cross-Industry Invoice syntax.",
            countries=["DE"],
            syntax="CII",
        ),
        FormatMetadata(
            id=OutputFormat.XRECHNUNG_UBL.value,
            display_name="XRechnung (UBL)",
            description="German e-invoicing standard based on UBL 2.1 syntax.",
            countries=["DE"],
            syntax="UBL",
        ),
        FormatMetadata(
            id=OutputFormat.PEPPOL_BIS.value,
            display_name="PEPPOL BIS 3.0",
            description="Pan-European e-invoicing format for the PEPPOL network.",
            countries=list(EU_PEPPOL_COUNTRIES),
            syntax="UBL",
        ),
        FormatMetadata(
            id=OutputFormat.FACTURX_EN16931.value,
            display_name="Factur-X EN 16931",
            description="Hybrid PDF invoice with embedded CII XML at EN 16931 conformance level.",
            countries=list(FACTURX_COUNTRIES),
            syntax="PDF+CII",
            mime_type="application/pdf",
            file_extension=".pdf",
        ),
        FormatMetadata(
            id=OutputFormat.FACTURX_BASIC.value,
            display_name="Factur-X Basic",
            description="Hybrid PDF invoice with embedded CII XML at Basic conformance level.",
            countries=list(FACTURX_COUNTRIES),
            syntax="PDF+CII",
            mime_type="application/pdf",
            file_extension=".pdf",
        ),
        FormatMetadata(
            id=OutputFormat.FATTURAPA.value,
            display_name="FatturaPA",
            description="Italian electronic invoicing format mandated by the Agenzia delle Entrate.",
            countries=["IT"],
            syntax="FatturaPA",
        ),
        FormatMetadata(
            id=OutputFormat.KSEF.value,
            display_name="KSeF FA(3)",
            description="Polish structured e-invoice for the Krajowy System e-Faktur.",
            countries=["PL"],
            syntax="KSeF",
        ),
        FormatMetadata(
            id=OutputFormat.NLCIUS.value,
            display_name="NLCIUS / SI-UBL 2.0",
            description="Dutch CIUS of EN 16931 based on UBL, also known as SI-UBL 2.0.",
            countries=["NL"],
            syntax="UBL",
        ),
        FormatMetadata(
            id=OutputFormat.CIUS_RO.value,
            display_name="CIUS-RO",
            description="Romanian CIUS of EN 16931 based on UBL for the RO e-Factura system.",
            countries=["RO"],
            syntax="UBL",
        ),
    )
}

DEFAULT_GENERATORS: tuple[type[FormatGenerator], ...] = (
    XRechnungCIIGenerator,
    XRechnungUBLGenerator,
    PeppolBISGenerator,
    FacturXEN16931Generator,
    FacturXBasicGenerator,
    FatturaPAGenerator,
    KSeFGenerator,
    NLCIUSGenerator,
    CIUSROGenerator,
)


def get_format_metadata(format_id: str) -> FormatMetadata:
    meta = FORMAT_METADATA.get(format_id)
    if meta is None:
        raise UnsupportedFormatError(format_id, sorted(FORMAT_METADATA))
    return meta


def formats_by_country(country_code: str) -> list[FormatMetadata]:
    code = country_code.upper()
    return [meta for meta in FORMAT_METADATA.values() if code in meta.countries]


class GeneratorRegistry:
    """Lookup table of format generators.

    Generators are instantiated on demand and share the registry's validation
    pipeline. Constructing a new registry is the only way to reset it.
    """

    def __init__(self, settings: Settings, pipeline: ValidationPipeline | None = None) -> None:
        """Initialize an empty registry.

        Args:
            settings: Application settings
            pipeline: Validation pipeline for all generators (created from settings if omitted)
        """
        self.settings = settings
        self.pipeline = pipeline or ValidationPipeline(settings)
        self._generators: dict[str, type[FormatGenerator]] = {}

    def register(self, generator_class: type[FormatGenerator]) -> None:
        """Register a generator class under its format_id.

        Args:
            generator_class: FormatGenerator subclass
        """
        self._generators[generator_class.format_id] = generator_class
        logger.debug(f"Registered format generator: {generator_class.format_id}")

    def create(self, format_id: str) -> FormatGenerator:
        """Instantiate the generator for a format.

        Args:
            format_id: Target format identifier

        Returns:
            Generator bound to the registry's validation pipeline

        Raises:
            UnsupportedFormatError: If no generator is registered for format_id
        """
        generator_class = self._generators.get(format_id)
        if generator_class is None:
            raise UnsupportedFormatError(format_id, self.list_formats())
        return generator_class(self.pipeline)

    def get_available_formats(self) -> set[str]:
        return set(self._generators)

    def list_formats(self) -> list[str]:
        return sorted(self._generators)

    def engine_versions(self) -> dict[str, str]:
        """Engine version of every registered generator, keyed by format id."""
        return {format_id: cls.version for format_id, cls in sorted(self._generators.items())}

    def describe(self) -> list[dict[str, object]]:
        """Metadata and version information for every registered format."""
        described = []
        for format_id in self.list_formats():
            cls = self._generators[format_id]
            entry: dict[str, object] = {
                "format_id": format_id,
                "format_name": cls.format_name,
                "version": cls.version,
                "spec_version": cls.spec_version,
                "spec_date": cls.spec_date,
                "deprecated": cls.deprecated,
            }
            meta = FORMAT_METADATA.get(format_id)
            if meta is not None:
                entry.update(meta.model_dump(exclude={"id"}))
            described.append(entry)
        return described


def build_default_registry(
    settings: Settings, pipeline: ValidationPipeline | None = None
) -> GeneratorRegistry:
    """Create a registry populated with all supported formats.

    Args:
        settings: Application settings
        pipeline: Optional shared validation pipeline

    Returns:
        GeneratorRegistry with one generator per OutputFormat
    """
    registry = GeneratorRegistry(settings, pipeline)
    for generator_class in DEFAULT_GENERATORS:
        registry.register(generator_class)
    logger.info(f"Format registry ready: {', '.join(registry.list_formats())}")
    return registry
