import pycountry


def get_country_name_from_iso(iso_code):
    """
    Converts a 2-letter ISO country code to its full name.
    """
    if not iso_code or len(iso_code) != 2:
        return "Unknown"
    try:
        country = pycountry.countries.get(alpha_2=iso_code.upper())
        return country.name if country else "Unknown"
    except LookupError as e:
        print(f"Error converting ISO code {iso_code}: {e}")
        return "Unknown"


def parse_bool(value, default=False):
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "on")
