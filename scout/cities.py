"""Lithuanian city names and the case-inflected forms they show up in."""

from typing import Optional

# City -> lower-case forms (nominative, genitive, locative, ASCII spelling).
# Order matters: the first city with a matching form wins.
CITY_FORMS: dict[str, tuple[str, ...]] = {
    "Vilnius": ("vilnius", "vilniaus", "vilniuje"),
    "Kaunas": ("kaunas", "kauno", "kaune"),
    "Klaipėda": ("klaipėda", "klaipėdos", "klaipėdoje", "klaipeda", "klaipedos"),
    "Šiauliai": ("šiauliai", "šiaulių", "šiauliuose", "siauliai"),
    "Panevėžys": ("panevėžys", "panevėžio", "panevėžyje", "panevezys"),
    "Alytus": ("alytus", "alytaus", "alytuje"),
    "Marijampolė": ("marijampolė", "marijampolės", "marijampolėje", "marijampole"),
    "Mažeikiai": ("mažeikiai", "mažeikių", "mažeikiuose", "mazeikiai"),
    "Jonava": ("jonava", "jonavos", "jonavoje"),
    "Utena": ("utena", "utenos", "utenoje"),
    "Kėdainiai": ("kėdainiai", "kėdainių", "kėdainiuose", "kedainiai"),
    "Telšiai": ("telšiai", "telšių", "telšiuose", "telsiai"),
    "Tauragė": ("tauragė", "tauragės", "tauragėje", "taurage"),
    "Ukmergė": ("ukmergė", "ukmergės", "ukmergėje", "ukmerge"),
    "Visaginas": ("visaginas", "visagino", "visagine"),
    "Palanga": ("palanga", "palangos", "palangoje"),
    "Druskininkai": ("druskininkai", "druskininkų", "druskininkuose"),
    "Neringa": ("neringa", "neringos", "neringoje"),
    "Birštonas": ("birštonas", "birštono", "birštone", "birstonas"),
    "Trakai": ("trakai", "trakų", "trakuose"),
}


def detect_city(text: str) -> Optional[str]:
    """Return the canonical city name mentioned in *text*, if any."""
    if not text:
        return None
    lower = text.lower()
    for city, forms in CITY_FORMS.items():
        if any(form in lower for form in forms):
            return city
    return None


def mentions_city(text: str, city: str) -> bool:
    """True when *text* already names *city* in any of its forms."""
    lower = text.lower()
    forms = CITY_FORMS.get(city, (city.lower(),))
    return city.lower() in lower or any(form in lower for form in forms)
