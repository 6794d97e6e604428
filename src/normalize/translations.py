"""Polish to English catalog vocabulary, condition mapping and slugs."""

import re

from src.ingest.base import Condition

CATEGORY_TRANSLATIONS: dict[str, str] = {
    # Main categories
    "Motoryzacja": "Automotive",
    "Części samochodowe": "Car Parts",
    "Wyposażenie i akcesoria samochodowe": "Car Equipment and Accessories",

    # Body parts
    "Części karoserii": "Body Parts",
    "Zderzaki": "Bumpers",
    "Drzwi": "Doors",
    "Maski": "Hoods",
    "Błotniki": "Fenders",
    "Szyby": "Glass",

    # Engine
    "Silniki i osprzęt": "Engines and Equipment",
    "Silniki kompletne": "Complete Engines",
    "Blok silnika": "Engine Block",
    "Głowice cylindrów": "Cylinder Heads",
    "Rozrząd": "Timing",
    "Turbosprężarki": "Turbochargers",

    # Cooling
    "Układ chłodzenia silnika": "Engine Cooling System",
    "Chłodnice": "Radiators",
    "Termostaty": "Thermostats",
    "Pompy wody": "Water Pumps",
    "Wentylatory chłodnicy": "Radiator Fans",

    # Electrical
    "Układ elektryczny, zapłon": "Electrical System, Ignition",
    "Akumulatory": "Batteries",
    "Świece": "Spark Plugs",
    "Sterowniki silnika": "Engine Control Units",
    "Centralne zamki": "Central Locks",
    "Czujniki": "Sensors",

    # Brakes
    "Układ hamulcowy": "Brake System",
    "Hamulce tarczowe": "Disc Brakes",
    "Hamulce bębnowe": "Drum Brakes",
    "Klocki hamulcowe": "Brake Pads",
    "Tarcze hamulcowe": "Brake Discs",
    "Pompy hamulcowe": "Brake Pumps",

    # Steering
    "Układ kierowniczy": "Steering System",
    "Kierownice": "Steering Wheels",
    "Przekładnie kierownicze": "Steering Gears",
    "Drążki kierownicze": "Tie Rods",
    "Końcówki drążków kierowniczych": "Tie Rod Ends",

    # Drivetrain
    "Układ napędowy": "Drive System",
    "Skrzynie biegów": "Transmissions",
    "Sprzęgła": "Clutches",
    "Półosie, przeguby, wały": "Axles, Joints, Shafts",
    "Dyferencjały": "Differentials",

    # Fuel
    "Układ paliwowy": "Fuel System",
    "Wtryskiwacze": "Injectors",
    "Pompy paliwa": "Fuel Pumps",
    "Filtry paliwa": "Fuel Filters",
    "LPG": "LPG",

    # Exhaust
    "Układ wydechowy": "Exhaust System",
    "Tłumiki": "Mufflers",
    "Katalizatory": "Catalysts",
    "Kolektory wydechowe": "Exhaust Manifolds",
    "Sondy lambda": "Lambda Sensors",

    # Suspension
    "Układ zawieszenia": "Suspension System",
    "Amortyzatory": "Shock Absorbers",
    "Sprężyny zawieszenia": "Suspension Springs",
    "Wahacze i elementy": "Control Arms and Components",
    "Stabilizatory i elementy": "Stabilizers and Components",

    # Air conditioning
    "Układ klimatyzacji": "Air Conditioning System",
    "Kompresory klimatyzacji": "AC Compressors",
    "Chłodnice klimatyzacji (skraplacze)": "AC Condensers",
    "Parowniki": "Evaporators",
    "Osuszacze": "Dryers",

    # Lighting
    "Oświetlenie": "Lighting",
    "Lampy przednie i elementy": "Front Lights and Components",
    "Lampy tylne i elementy": "Rear Lights and Components",
    "Kierunkowskazy": "Turn Signals",
    "Światła do jazdy dziennej DRL": "Daytime Running Lights DRL",

    # Filters
    "Filtry": "Filters",
    "Filtry powietrza": "Air Filters",
    "Filtry oleju": "Oil Filters",
    "Filtry kabinowe": "Cabin Filters",

    # Interior
    "Wyposażenie wnętrza": "Interior Equipment",
    "Fotele, kanapy": "Seats, Sofas",
    "Deski rozdzielcze, konsole": "Dashboards, Consoles",
    "Pasy bezpieczeństwa": "Seat Belts",

    # Heating
    "Ogrzewanie postojowe i chłodnictwo samochodowe": "Parking Heating and Automotive Refrigeration",
    "Ogrzewanie postojowe": "Parking Heating",
    "Kompletne instalacje": "Complete Installations",
    "Części": "Parts",
    "Chłodnictwo samochodowe": "Automotive Refrigeration",
    "Nagrzewnice": "Heaters",

    # Common terms
    "Pozostałe": "Other",
    "Zestawy": "Sets",
    "Części montażowe": "Mounting Parts",
    "Uszczelki": "Gaskets",
    "Przewody": "Cables",
    "Sterowniki": "Controllers",
    "Silniczki": "Motors",
    "Pompy": "Pumps",
    "Zawory": "Valves",
    "Regulatory": "Regulators",
}

# Source vocabulary (lower case) -> condition; schema.org names included
CONDITION_TRANSLATIONS: dict[str, Condition] = {
    "nowy": Condition.NEW,
    "nowa": Condition.NEW,
    "nowe": Condition.NEW,
    "używany": Condition.USED,
    "używana": Condition.USED,
    "używane": Condition.USED,
    "uszkodzony": Condition.DAMAGED,
    "uszkodzona": Condition.DAMAGED,
    "uszkodzone": Condition.DAMAGED,
    "odnowiony": Condition.REFURBISHED,
    "odnowiona": Condition.REFURBISHED,
    "regenerowany": Condition.REGENERATED,
    "regenerowana": Condition.REGENERATED,
    "oryginał": Condition.ORIGINAL,
    "oryginalny": Condition.ORIGINAL,
    "zamiennik": Condition.REPLACEMENT,
    "newcondition": Condition.NEW,
    "usedcondition": Condition.USED,
    "damagedcondition": Condition.DAMAGED,
    "refurbishedcondition": Condition.REFURBISHED,
}

POLISH_CHARS = str.maketrans("ąćęłńóśźż", "acelnoszz")


def translate_name(name: str) -> str:
    """English name for a catalog term, or the name itself if unknown."""
    return CATEGORY_TRANSLATIONS.get(name.strip(), name)


def translate_condition(value: str | None) -> Condition:
    """
    Map a source condition label to a Condition.

    Accepts Polish labels ("Nowy") and schema.org values, bare or as URLs
    ("https://schema.org/NewCondition").
    """
    if not value:
        return Condition.UNKNOWN
    key = value.strip().rstrip("/").rsplit("/", 1)[-1].lower()
    if key in CONDITION_TRANSLATIONS:
        return CONDITION_TRANSLATIONS[key]
    for condition in Condition:
        if condition.value.lower() == key:
            return condition
    return Condition.UNKNOWN


def slugify(name: str) -> str:
    """URL-safe slug: lower case, Polish letters folded, other runs -> '-'."""
    slug = name.lower().translate(POLISH_CHARS)
    slug = re.sub(r"[^a-z0-9]+", "-", slug)
    return slug.strip("-")


def translated_slug(name: str) -> str:
    return slugify(translate_name(name))


def translated_url(slug: str, surrogate_id: int, kind: str = "product") -> str:
    """Site-independent path for a record, e.g. ``/product/brake-pads-10001``."""
    return f"/{kind}/{slug}-{surrogate_id}"
