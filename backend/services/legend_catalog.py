"""
Legend element catalog
German construction elements that appear in plan legends, with their
category, measurement type and element code, plus the classification prompt built from them
"""

import re
import logging
from typing import Dict, List, Optional, Tuple
from dataclasses import dataclass, field

from services.pipeline_contracts import ElementCategory, MeasurementType

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CatalogElement:
    """One known legend element"""
    name: str
    code: str
    category: ElementCategory
    measurement_type: MeasurementType
    description: str = ""
    aliases: Tuple[str, ...] = field(default_factory=tuple)

    def terms(self) -> Tuple[str, ...]:
        return (self.name, self.code) + self.aliases


WALL = ElementCategory.WALL
OPENING = ElementCategory.OPENING
REFERENCE = ElementCategory.REFERENCE
AREA = MeasurementType.AREA
COUNT = MeasurementType.COUNT
NONE = MeasurementType.NONE

DEFAULT_ELEMENTS: Tuple[CatalogElement, ...] = (
    # Walls and building materials
    CatalogElement("Stahlbeton", "StB", WALL, AREA, "Reinforced concrete",
                   ("reinforced concrete", "stahlbetonwand")),
    CatalogElement("Beton unbewehrt", "B", WALL, AREA, "Unreinforced concrete",
                   ("unreinforced concrete", "beton")),
    CatalogElement("Mauerwerk KS", "MW KS", WALL, AREA, "Calcium silicate masonry",
                   ("mauerwerk", "kalksandstein", "masonry")),
    CatalogElement("Dämmung hart", "DH", WALL, AREA, "Rigid insulation",
                   ("rigid insulation", "hartschaum")),
    CatalogElement("Dämmung weich", "DW", WALL, AREA, "Soft insulation",
                   ("soft insulation", "mineralwolle", "dämmung", "insulation")),
    CatalogElement("Trockenbau", "TB", WALL, AREA, "Drywall partition",
                   ("drywall", "gipskarton", "leichtbauwand")),
    CatalogElement("Holz", "Ho", WALL, AREA, "Timber construction", ("timber", "wood", "holzbau")),
    CatalogElement("Metall", "Me", WALL, AREA, "Steel or metal construction", ("metal", "steel", "stahl")),

    # Openings and slots
    CatalogElement("Wanddurchbruch", "WD", OPENING, COUNT, "Wall penetration", ("wall opening",)),
    CatalogElement("Deckendurchbruch", "DD", OPENING, COUNT, "Slab penetration",
                   ("slab opening", "ceiling opening")),
    CatalogElement("Bodendurchbruch", "BD", OPENING, COUNT, "Floor penetration", ("floor opening",)),
    CatalogElement("Türöffnung", "TD", OPENING, COUNT, "Door opening", ("door", "tür")),
    CatalogElement("Fensteröffnung", "FD", OPENING, COUNT, "Window opening", ("window", "fenster")),
    CatalogElement("Wandschlitz", "WS", OPENING, COUNT, "Wall slot", ("wall slot",)),
    CatalogElement("Deckenschlitz", "DS", OPENING, COUNT, "Slab slot", ("slab slot",)),
    CatalogElement("Bodenschlitz", "BS", OPENING, COUNT, "Floor slot", ("floor slot",)),

    # Reference levels
    CatalogElement("OK Fertig", "OKF", REFERENCE, NONE, "Top of finished construction", ("ok fertig",)),
    CatalogElement("UK Fertig", "UKF", REFERENCE, NONE, "Bottom of finished construction", ("uk fertig",)),
    CatalogElement("OK Roh", "OKR", REFERENCE, NONE, "Top of structural construction", ("ok roh",)),
    CatalogElement("UK Roh", "UKR", REFERENCE, NONE, "Bottom of structural construction", ("uk roh",)),
    CatalogElement("OK FFB", "OK FFB", REFERENCE, NONE, "Top of finished floor", ("fertigfußboden",)),
    CatalogElement("OK RD", "OK RD", REFERENCE, NONE, "Top of structural slab", ("rohdecke",)),
    CatalogElement("UK RD", "UK RD", REFERENCE, NONE, "Bottom of structural slab"),
    CatalogElement("UK WS", "UK WS", REFERENCE, NONE, "Bottom of wall slot"),
    CatalogElement("Brüstungshöhe", "BRH", REFERENCE, NONE, "Sill height", ("sill height",)),
    CatalogElement("Lichte Raumhöhe", "LRH", REFERENCE, NONE, "Clear room height", ("clear height",)),

    # Fire protection
    CatalogElement("F30", "F30", REFERENCE, NONE, "Fire resistance 30 minutes"),
    CatalogElement("F90", "F90", REFERENCE, NONE, "Fire resistance 90 minutes"),

    # Building services usage codes
    CatalogElement("Sanitär", "S", REFERENCE, NONE, "Plumbing", ("plumbing",)),
    CatalogElement("Heizung", "H", REFERENCE, NONE, "Heating", ("heating",)),
    CatalogElement("Elektro", "E", REFERENCE, NONE, "Electrical", ("electrical",)),
    CatalogElement("Lüftung", "L", REFERENCE, NONE, "Ventilation", ("ventilation",)),
    CatalogElement("Gas", "G", REFERENCE, NONE, "Gas supply"),
)

# Single-letter usage codes recognised as utility annotations
UTILITY_CODES: Dict[str, str] = {
    "S": "Sanitär",
    "H": "Heizung",
    "E": "Elektro",
    "L": "Lüftung",
    "G": "Gas",
    "W": "Wasser",
}


def _term_pattern(term: str) -> re.Pattern:
    return re.compile(r'(?<!\w)' + re.escape(term.lower()) + r'(?!\w)')


class LegendElementCatalog:
    """Lookup over the known legend elements"""

    def __init__(self, elements: Optional[Tuple[CatalogElement, ...]] = None):
        self.elements: Tuple[CatalogElement, ...] = tuple(elements or DEFAULT_ELEMENTS)
        self._by_term: Dict[str, CatalogElement] = {}
        for element in self.elements:
            for term in element.terms():
                self._by_term.setdefault(term.lower(), element)

        # Longest names first so "Dämmung hart" wins over "dämmung"
        self._search_terms: List[Tuple[re.Pattern, CatalogElement]] = []
        for element in self.elements:
            for term in (element.name,) + element.aliases:
                self._search_terms.append((_term_pattern(term), element))
        self._search_terms.sort(key=lambda item: len(item[0].pattern), reverse=True)

    def lookup(self, name: str) -> Optional[CatalogElement]:
        """Exact, case-insensitive lookup by name, code or alias"""
        if not name:
            return None
        return self._by_term.get(name.strip().lower())

    def find_in_text(self, text: str) -> Optional[CatalogElement]:
        """First catalog element whose name or alias appears as a whole word in ``text``"""
        lower = (text or "").lower()
        for pattern, element in self._search_terms:
            if pattern.search(lower):
                return element
        return None

    def code_for(self, element_name: str) -> Optional[str]:
        element = self.lookup(element_name)
        return element.code if element else None

    def by_category(self, category: ElementCategory) -> List[CatalogElement]:
        return [e for e in self.elements if e.category == category]

    def wall_elements(self) -> List[CatalogElement]:
        return self.by_category(ElementCategory.WALL)

    def abbreviations(self) -> Dict[str, CatalogElement]:
        """Element codes usable as plan abbreviations (two or more characters)"""
        return {e.code: e for e in self.elements if len(e.code) >= 2}

    def generate_classification_prompt(self) -> str:
        """Prompt asking a vision-language model to classify one legend swatch"""
        lines = [
            "You are analyzing a single swatch cut from the legend of a German architectural plan.",
            "Identify which building element the hatch pattern or fill represents.",
            "",
            "Known elements (name | code | category | measurement):",
        ]
        for element in self.elements:
            lines.append(
                f"- {element.name} | {element.code} | {element.category.value} | "
                f"{element.measurement_type.value}"
            )
        lines.extend([
            "",
            "Categories: wall, opening, reference, unknown.",
            "Measurement types: area (walls, in m²), count (openings), none (reference marks).",
            "",
            "Return ONLY a JSON object with this structure:",
            '{"element_type": "<element name>", "category": "<category>", '
            '"measurement_type": "<measurement type>", "confidence": <0.0-1.0>}',
        ])
        return "\n".join(lines)


# Shared default catalog
legend_catalog = LegendElementCatalog()
