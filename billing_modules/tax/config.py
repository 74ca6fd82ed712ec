"""
Tax Configuration Schema.

Defines the structure and sensible defaults for tax settings.  A TaxConfig
value is injected into TaxResolver; nothing reads tax settings from global
state.  Values are normally loaded from YAML via ``billing_config.loader``.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Self

from billing_kernel.domain.billing_types import TaxType
from billing_kernel.logging_config import get_logger

logger = get_logger("modules.tax.config")

VALID_REPORTING_FREQUENCIES = {"monthly", "quarterly", "annually"}

DEFAULT_EXEMPTION_CODES = (
    "NONPROFIT",
    "GOVERNMENT",
    "RESALE",
    "EXPORT",
    "EDUCATIONAL",
    "RELIGIOUS",
    "MEDICAL",
)

DEFAULT_PLATFORM_TAX_CODE = "txcd_99999999"


class TaxProvider(Enum):
    """Where non-exempt tax is computed."""
    MANUAL = "manual"
    INTEGRATED_PLATFORM = "integrated_platform"
    EXTERNAL = "external"


def _decimal(value) -> Decimal:
    return value if isinstance(value, Decimal) else Decimal(str(value))


@dataclass
class PlatformProviderConfig:
    """Integrated tax platform settings (used only when provider is integrated_platform)."""
    enabled: bool = False
    api_key: str | None = None
    default_tax_code: str = DEFAULT_PLATFORM_TAX_CODE


@dataclass
class ExternalProviderConfig:
    """Generic external tax service settings."""
    api_url: str | None = None
    api_key: str | None = None
    timeout_seconds: float = 30.0

    def __post_init__(self):
        if self.timeout_seconds <= 0:
            raise ValueError("external.timeout_seconds must be positive")

    @property
    def is_configured(self) -> bool:
        return bool(self.api_url and self.api_url.strip())


@dataclass
class JurisdictionConfig:
    """A configured rate for a country or country+state pair."""
    code: str
    country: str
    tax_type: TaxType
    rate: Decimal
    name: str
    state: str | None = None

    def __post_init__(self):
        if not self.code or not self.code.strip():
            raise ValueError("jurisdiction code cannot be empty")
        if not self.country or len(self.country) != 2:
            raise ValueError(f"jurisdiction {self.code}: country must be a 2-letter code")
        self.rate = _decimal(self.rate)
        if not Decimal("0") <= self.rate <= Decimal("1"):
            raise ValueError(f"jurisdiction {self.code}: rate must be within [0, 1]")
        if isinstance(self.tax_type, str):
            self.tax_type = TaxType(self.tax_type)


@dataclass
class ExemptionConfig:
    enabled: bool = True
    codes: tuple[str, ...] = DEFAULT_EXEMPTION_CODES


@dataclass
class ComplianceConfig:
    reporting_frequency: str = "quarterly"
    retention_years: int = 7

    def __post_init__(self):
        if self.reporting_frequency not in VALID_REPORTING_FREQUENCIES:
            raise ValueError(
                f"reporting_frequency must be one of {VALID_REPORTING_FREQUENCIES}, "
                f"got '{self.reporting_frequency}'"
            )
        if self.retention_years < 0:
            raise ValueError("retention_years cannot be negative")


def default_jurisdictions() -> tuple[JurisdictionConfig, ...]:
    return (
        JurisdictionConfig("US_CA", "US", TaxType.SALES_TAX, Decimal("0.0725"), "California", "CA"),
        JurisdictionConfig("US_NY", "US", TaxType.SALES_TAX, Decimal("0.08"), "New York", "NY"),
        JurisdictionConfig("US_TX", "US", TaxType.SALES_TAX, Decimal("0.0625"), "Texas", "TX"),
        JurisdictionConfig("CA_ON", "CA", TaxType.HST, Decimal("0.13"), "Ontario", "ON"),
        JurisdictionConfig("CA_BC", "CA", TaxType.GST, Decimal("0.12"), "British Columbia", "BC"),
        JurisdictionConfig("EU_DE", "DE", TaxType.VAT, Decimal("0.19"), "Germany"),
        JurisdictionConfig("EU_FR", "FR", TaxType.VAT, Decimal("0.20"), "France"),
        JurisdictionConfig("EU_GB", "GB", TaxType.VAT, Decimal("0.20"), "United Kingdom"),
    )


@dataclass
class TaxConfig:
    """
    Configuration schema for the tax module.

    Field defaults use the manual provider with the built-in jurisdiction
    table.  Override at instantiation:

        config = TaxConfig(
            provider=TaxProvider.EXTERNAL,
            external=ExternalProviderConfig(api_url="https://tax.example.com"),
        )
    """

    provider: TaxProvider = TaxProvider.MANUAL
    default_tax_rate: Decimal = Decimal("0.08")
    enable_regional_tax: bool = True
    provider_timeout_seconds: float = 10.0

    platform: PlatformProviderConfig = field(default_factory=PlatformProviderConfig)
    external: ExternalProviderConfig = field(default_factory=ExternalProviderConfig)
    jurisdictions: tuple[JurisdictionConfig, ...] = field(default_factory=default_jurisdictions)
    exemptions: ExemptionConfig = field(default_factory=ExemptionConfig)
    compliance: ComplianceConfig = field(default_factory=ComplianceConfig)

    def __post_init__(self):
        if isinstance(self.provider, str):
            self.provider = TaxProvider(self.provider)

        self.default_tax_rate = _decimal(self.default_tax_rate)
        if not Decimal("0") <= self.default_tax_rate <= Decimal("1"):
            raise ValueError("default_tax_rate must be within [0, 1]")

        if self.provider_timeout_seconds <= 0:
            raise ValueError("provider_timeout_seconds must be positive")

        codes = [j.code for j in self.jurisdictions]
        if len(codes) != len(set(codes)):
            duplicates = {code for code in codes if codes.count(code) > 1}
            logger.warning(
                "tax_config_duplicate_jurisdictions",
                extra={"duplicate_codes": sorted(duplicates)},
            )
            raise ValueError(f"jurisdictions contains duplicate codes: {duplicates}")

        logger.info(
            "tax_config_initialized",
            extra={
                "provider": self.provider.value,
                "default_tax_rate": str(self.default_tax_rate),
                "enable_regional_tax": self.enable_regional_tax,
                "platform_enabled": self.platform.enabled,
                "external_configured": self.external.is_configured,
                "jurisdiction_count": len(self.jurisdictions),
                "exemptions_enabled": self.exemptions.enabled,
                "reporting_frequency": self.compliance.reporting_frequency,
            },
        )

    def jurisdiction(self, code: str) -> JurisdictionConfig | None:
        for j in self.jurisdictions:
            if j.code == code:
                return j
        return None

    def jurisdiction_for(self, country: str, state: str | None = None) -> JurisdictionConfig | None:
        """Entry for the country+state pair, else the country-level entry."""
        country_level = None
        for j in self.jurisdictions:
            if j.country != country:
                continue
            if j.state == state:
                return j
            if j.state is None:
                country_level = j
        return country_level

    @classmethod
    def with_defaults(cls) -> Self:
        """Create config with the built-in defaults."""
        logger.info("tax_config_created_with_defaults")
        return cls()

    @classmethod
    def from_dict(cls, data: dict) -> Self:
        """Create config from a dictionary (e.g., the ``tax`` section of a YAML file)."""
        logger.info(
            "tax_config_loading_from_dict",
            extra={"keys": sorted(data.keys())},
        )
        data = dict(data)
        if "platform" in data and isinstance(data["platform"], dict):
            data["platform"] = PlatformProviderConfig(**data["platform"])
        if "external" in data and isinstance(data["external"], dict):
            data["external"] = ExternalProviderConfig(**data["external"])
        if "exemptions" in data and isinstance(data["exemptions"], dict):
            exemptions = dict(data["exemptions"])
            if "codes" in exemptions:
                exemptions["codes"] = tuple(code.upper() for code in exemptions["codes"])
            data["exemptions"] = ExemptionConfig(**exemptions)
        if "compliance" in data and isinstance(data["compliance"], dict):
            data["compliance"] = ComplianceConfig(**data["compliance"])
        if "jurisdictions" in data:
            raw = data["jurisdictions"]
            if isinstance(raw, dict):
                raw = [{"code": code, **entry} for code, entry in raw.items()]
            data["jurisdictions"] = tuple(
                JurisdictionConfig(**j) if isinstance(j, dict) else j
                for j in raw
            )
        return cls(**data)
