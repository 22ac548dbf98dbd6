"""
Field name -> canonical data key mapping.

Template authors label the same concept in many ways ("Buyer First Name",
"customer_first_name", "FNAME"). Every raw label is normalized (lower-case,
letters and digits only) and looked up in an alias table. Lookup is exact:
no fuzzy matching, no partial matches, unknown names simply map to nothing.

The alias table is plain data. A ``FieldMapper`` can be built with any table,
which is how tests and new template families supply their own vocabulary.
"""

from __future__ import annotations

import logging
from types import MappingProxyType
from typing import Dict, Iterable, Mapping, Optional

logger = logging.getLogger(__name__)

# Canonical key -> aliases. Aliases may be written in any spelling; they are
# normalized when a mapper is built.
DEFAULT_SYNONYMS: Mapping[str, Iterable[str]] = {
    # Customer
    "firstName": ["firstname", "customerfirstname", "buyerfirstname", "givenname",
                  "fname", "first"],
    "lastName": ["lastname", "customerlastname", "buyerlastname", "familyname",
                 "surname", "lname", "last"],
    "address": ["address", "customeraddress", "buyeraddress", "streetaddress",
                "homeaddress", "mailingaddress", "fulladdress"],
    "licenseNumber": ["licensenumber", "driverslicensenumber", "driverlicensenumber",
                      "dlnumber", "dlno", "licenseno", "driverslicense"],
    "licenseExpiration": ["licenseexpiration", "licenseexpirationdate", "licenseexp",
                          "dlexpiration", "expirationdate", "expdate"],

    # Insurance
    "insuranceCompany": ["insurancecompany", "insurer", "insurancecarrier",
                         "insuranceprovider", "insurance"],

    # New vehicle
    "newCarVin": ["vin", "vehiclevin", "newcarvin", "newvehiclevin", "newvin"],
    "newCarOdometer": ["odometer", "newcarodometer", "newvehicleodometer",
                       "vehicleodometer", "mileage", "newcarmileage"],

    # Trade-in
    "tradeInVin": ["tradeinvin", "tradevin"],
    "tradeInOdometer": ["tradeinodometer", "tradeodometer", "tradeinmileage",
                        "trademileage"],
    "tradeInYear": ["tradeinyear", "tradeyear"],
    "tradeInMake": ["tradeinmake", "trademake"],
    "tradeInModel": ["tradeinmodel", "trademodel"],

    # Dates injected by the filler
    "currentDate": ["date", "currentdate"],
    "todaysDate": ["todaysdate", "todaydate", "today"],
    "dealDate": ["dealdate", "saledate", "dateofsale", "deliverydate"],
}


def normalize_field_name(raw: str) -> str:
    """Lower-case and drop every character that is not a letter or digit."""
    if not raw:
        return ""
    return "".join(ch for ch in str(raw).lower() if ch.isalnum())


def build_alias_table(synonyms: Mapping[str, Iterable[str]]) -> Dict[str, str]:
    """Invert a canonical -> aliases table into normalized alias -> canonical."""
    table: Dict[str, str] = {}
    for canonical, aliases in synonyms.items():
        for alias in aliases:
            normalized = normalize_field_name(alias)
            if not normalized:
                continue
            existing = table.get(normalized)
            if existing and existing != canonical:
                raise ValueError(
                    f"Alias '{alias}' maps to both '{existing}' and '{canonical}'"
                )
            table[normalized] = canonical
    return table


DEFAULT_FIELD_ALIASES: Mapping[str, str] = MappingProxyType(build_alias_table(DEFAULT_SYNONYMS))


class FieldMapper:
    """Maps raw template field names onto canonical DataRecord keys."""

    def __init__(self, aliases: Mapping[str, str] = DEFAULT_FIELD_ALIASES):
        table = {normalize_field_name(alias): key for alias, key in aliases.items()}
        self.aliases: Mapping[str, str] = MappingProxyType(table)

    @classmethod
    def from_synonyms(cls, synonyms: Mapping[str, Iterable[str]]) -> "FieldMapper":
        return cls(build_alias_table(synonyms))

    def map_field_name(self, raw_name: str) -> Optional[str]:
        key = self.aliases.get(normalize_field_name(raw_name))
        if key is None:
            logger.debug("No canonical key for field '%s'", raw_name)
        return key

    def canonical_keys(self) -> set:
        return set(self.aliases.values())


DEFAULT_FIELD_MAPPER = FieldMapper()


def map_field_name(raw_name: str) -> Optional[str]:
    return DEFAULT_FIELD_MAPPER.map_field_name(raw_name)
