"""
OEE Monitor - Material Rate Lookup

This module maps installed material codes to their nominal rate in units per
minute (PPm). The table is loaded from a YAML file when MATERIAL_RATES_FILE
is set:

    materials:
      - code: "MAT001"
        name: "Film 20 micra"
        rate_per_minute: 72
      - code: "MAT002"
        rate_per_minute: 58

A plain ``code: rate`` mapping is accepted as well.
"""

from pathlib import Path
from typing import Dict, Optional
import structlog
import yaml

from oee_monitor.config import settings
from oee_monitor.utils.exceptions import ConfigurationError

logger = structlog.get_logger()


class MaterialRateLookup:
    """In-memory material code → target rate table."""

    def __init__(self, rates: Optional[Dict[str, float]] = None, default_rate: Optional[float] = None):
        self.rates: Dict[str, float] = dict(rates or {})
        self.default_rate = default_rate if default_rate is not None else settings.DEFAULT_TARGET_RATE_PER_MINUTE

    @classmethod
    def from_file(cls, path: str, default_rate: Optional[float] = None) -> "MaterialRateLookup":
        """Load the table from a YAML file."""
        file_path = Path(path)
        if not file_path.exists():
            raise ConfigurationError(
                "Material rates file not found",
                details={"path": str(file_path)}
            )

        try:
            with open(file_path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(
                "Material rates file is not valid YAML",
                details={"path": str(file_path), "error": str(e)}
            )

        lookup = cls(cls._parse(data, str(file_path)), default_rate=default_rate)
        logger.info("Material rates loaded", path=str(file_path), materials=len(lookup.rates))
        return lookup

    @staticmethod
    def _parse(data, source: str) -> Dict[str, float]:
        if isinstance(data, dict) and "materials" in data:
            entries = data["materials"] or []
            if not isinstance(entries, list):
                raise ConfigurationError("'materials' must be a list", details={"path": source})
            pairs = []
            for entry in entries:
                if not isinstance(entry, dict) or "code" not in entry or "rate_per_minute" not in entry:
                    raise ConfigurationError(
                        "Material entries need 'code' and 'rate_per_minute'",
                        details={"path": source, "entry": entry}
                    )
                pairs.append((entry["code"], entry["rate_per_minute"]))
        elif isinstance(data, dict):
            pairs = list(data.items())
        else:
            raise ConfigurationError("Material rates must be a mapping", details={"path": source})

        rates: Dict[str, float] = {}
        for code, rate in pairs:
            try:
                rate = float(rate)
            except (TypeError, ValueError):
                raise ConfigurationError(
                    "Material rate is not a number",
                    details={"path": source, "code": code, "rate": rate}
                )
            if rate <= 0:
                raise ConfigurationError(
                    "Material rate must be positive",
                    details={"path": source, "code": code, "rate": rate}
                )
            rates[str(code)] = rate
        return rates

    def lookup_target_rate(self, material_code: Optional[str]) -> Optional[float]:
        """Nominal rate for ``material_code``; None when unknown."""
        if not material_code:
            return None
        return self.rates.get(material_code)

    def rate_or_default(self, material_code: Optional[str]) -> float:
        rate = self.lookup_target_rate(material_code)
        if rate is None:
            if material_code:
                logger.warning(
                    "Unknown material code, using default target rate",
                    material_code=material_code,
                    default_rate=self.default_rate
                )
            return self.default_rate
        return rate

    def set_rate(self, material_code: str, rate: float) -> None:
        if rate <= 0:
            raise ConfigurationError("Material rate must be positive", details={"code": material_code, "rate": rate})
        self.rates[material_code] = float(rate)


def load_material_rates(path: Optional[str] = None) -> MaterialRateLookup:
    """Build the lookup from MATERIAL_RATES_FILE; an empty table when unset or unreadable."""
    path = path or settings.MATERIAL_RATES_FILE
    if not path:
        return MaterialRateLookup()
    try:
        return MaterialRateLookup.from_file(path)
    except ConfigurationError as e:
        logger.warning("Material rates unavailable, using default target rate", error=e.message, details=e.details)
        return MaterialRateLookup()
