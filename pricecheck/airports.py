from typing import Optional

# Airports sharing a metro area are interchangeable for round-trip matching.
METRO_AREAS: dict[str, frozenset[str]] = {
    "ROM": frozenset({"FCO", "CIA"}),
    "MIL": frozenset({"MXP", "LIN", "BGY"}),
    "LON": frozenset({"LHR", "LGW", "STN", "LTN", "LCY", "SEN"}),
    "PAR": frozenset({"CDG", "ORY", "BVA"}),
    "NYC": frozenset({"JFK", "LGA", "EWR"}),
    "WAS": frozenset({"IAD", "DCA", "BWI"}),
    "CHI": frozenset({"ORD", "MDW"}),
    "STO": frozenset({"ARN", "BMA", "NYO"}),
    "OSL": frozenset({"OSL", "TRF"}),
    "BER": frozenset({"BER", "SXF", "TXL"}),
    "TYO": frozenset({"NRT", "HND"}),
    "SEL": frozenset({"ICN", "GMP"}),
    "BUE": frozenset({"EZE", "AEP"}),
    "SAO": frozenset({"GRU", "CGH", "VCP"}),
}

_AIRPORT_TO_METRO = {
    airport: metro for metro, airports in METRO_AREAS.items() for airport in airports
}

# Fallback lookup used only when the flight number carries no airline prefix.
AIRLINE_NAME_TO_CODE: dict[str, str] = {
    "ita airways": "AZ",
    "alitalia": "AZ",
    "lufthansa": "LH",
    "british airways": "BA",
    "air france": "AF",
    "swiss international": "LX",
    "swiss": "LX",
    "klm": "KL",
    "emirates": "EK",
    "american airlines": "AA",
    "united airlines": "UA",
    "delta": "DL",
    "qatar airways": "QR",
    "singapore airlines": "SQ",
    "cathay pacific": "CX",
    "japan airlines": "JL",
    "ana": "NH",
    "norwegian": "DY",
    "wizz air": "W6",
    "ryanair": "FR",
    "easyjet": "U2",
    "turkish airlines": "TK",
    "ethiopian airlines": "ET",
    "air canada": "AC",
    "qantas": "QF",
}


def metro_area(airport: str) -> str:
    """Return the metro-area code for an airport, or the airport itself."""
    code = airport.strip().upper()
    return _AIRPORT_TO_METRO.get(code, code)


def same_metro_area(first: Optional[str], second: Optional[str]) -> bool:
    if not first or not second:
        return False
    return metro_area(first) == metro_area(second)


def airline_code_for_name(name: str) -> Optional[str]:
    """Look up the IATA code of an airline given its name."""
    normalized = name.strip().lower()
    if not normalized:
        return None
    if normalized in AIRLINE_NAME_TO_CODE:
        return AIRLINE_NAME_TO_CODE[normalized]
    # Partial match only for full names, short strings are probably codes
    if len(normalized) > 3:
        for key in sorted(AIRLINE_NAME_TO_CODE, key=len, reverse=True):
            if len(key) > 3 and key in normalized:
                return AIRLINE_NAME_TO_CODE[key]
    return None
