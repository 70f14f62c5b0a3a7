"""Coarse geo distribution for a sound's observations."""

from collections import Counter
from typing import Dict, Iterable, List, Optional

COUNTRY_NAMES: Dict[str, str] = {
    "US": "United States",
    "BR": "Brazil",
    "GB": "United Kingdom",
    "UK": "United Kingdom",
    "CA": "Canada",
    "AU": "Australia",
    "DE": "Germany",
    "FR": "France",
    "ES": "Spain",
    "IT": "Italy",
    "IN": "India",
    "JP": "Japan",
    "KR": "South Korea",
    "MX": "Mexico",
    "ID": "Indonesia",
    "VN": "Vietnam",
    "PH": "Philippines",
    "TH": "Thailand",
    "RU": "Russia",
    "TR": "Turkey",
}

TOP_N = 5


def country_name(code: str) -> str:
    """Display name for a region code; unknown codes pass through as-is."""
    code = code.upper()
    return COUNTRY_NAMES.get(code, code)


def calculate_geo_distribution(regions: Iterable[Optional[str]], top_n: int = TOP_N) -> List[dict]:
    """
    Aggregate region tags into the top countries by share.

    Only two-letter codes count. Percentages are whole numbers assigned by
    largest remainder over all countries, so the returned entries never
    sum past 100.

    Returns:
        ``[{"country": name, "code": code, "percent": int}, ...]`` sorted
        by descending percent, at most ``top_n`` long
    """
    counts = Counter(
        region.strip().upper()
        for region in regions
        if isinstance(region, str) and len(region.strip()) == 2
    )
    total = sum(counts.values())
    if not total:
        return []

    floors = {code: count * 100 // total for code, count in counts.items()}
    leftover = 100 - sum(floors.values())
    by_remainder = sorted(
        counts,
        key=lambda code: (-(counts[code] * 100 % total), -counts[code], code)
    )
    for code in by_remainder[:leftover]:
        floors[code] += 1

    ranked = sorted(floors.items(), key=lambda entry: (-entry[1], -counts[entry[0]], entry[0]))
    return [
        {"country": country_name(code), "code": code, "percent": percent}
        for code, percent in ranked[:top_n]
    ]
