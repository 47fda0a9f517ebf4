# order-ingestion-app/measurement_extractor.py

import re
import logging

DIMENSION_LETTERS = ("A", "B", "C", "D", "E", "F", "G")
DIMENSION_NAME_PATTERN = re.compile(r"dimension\s*([a-g])", re.IGNORECASE)

LINK_ATTACHMENT_LABELS = [
    "Leave Sections Loose",
    "Leave Bolster Loose",
    "Fabric Link (+£40)",
    "Zip-Link (+£40)",
]
DEFAULT_DELIVERY_OPTION = "Rolled and Boxed"

OPTION_MEASUREMENTS_PROVIDED = "option1"
OPTION_SEND_LATER = "option2"
OPTION_MEASURING_KIT = "option3"


def _iter_properties(properties):
    """Yields (name, value) pairs from a Shopify properties list, tolerating a plain dict."""
    if not properties:
        return
    if isinstance(properties, dict):
        properties = [{"name": k, "value": v} for k, v in properties.items()]
    for prop in properties:
        if not isinstance(prop, dict):
            continue
        if "name" not in prop and len(prop) == 1:
            # {"Enter Dimension A (cm)": "100"} shorthand
            prop = {"name": next(iter(prop)), "value": next(iter(prop.values()))}
        name = prop.get("name")
        if name is None:
            continue
        value = prop.get("value")
        yield str(name), ("" if value is None else str(value))


def _unit_from_property_name(name):
    if "(mm)" in name:
        return "mm"
    if "(in)" in name or "(inches)" in name:
        return "in"
    return "cm"


def _classify_measurement_option(dimensions_found, properties):
    if dimensions_found:
        return OPTION_MEASUREMENTS_PROVIDED
    for name, value in _iter_properties(properties):
        name_lower = name.lower()
        if "measurement" in name_lower and "option" in name_lower:
            choice = value.lower()
            if "later" in choice or "send" in choice:
                return OPTION_SEND_LATER
            if "kit" in choice or "measuring" in choice:
                return OPTION_MEASURING_KIT
            break
    return OPTION_SEND_LATER


def extract_measurements(properties):
    """
    Parses line-item custom properties into dimension measurements.

    Empty or whitespace-only values count as not provided. When the same letter
    appears twice the later property wins.

    Returns:
        dict: {
            'measurements': [{'letter', 'value', 'unit'}, ...] in A-G order,
            'status': {'provided', 'missing', 'complete', 'option'},
            'properties': {name: value} of every property seen
        }
    """
    by_letter = {}
    all_properties = {}
    for name, raw_value in _iter_properties(properties):
        all_properties[name] = raw_value
        value = raw_value.strip()
        if not value:
            continue
        letter_match = DIMENSION_NAME_PATTERN.search(name)
        if not letter_match:
            continue
        letter = letter_match.group(1).upper()
        by_letter[letter] = {"letter": letter, "value": value, "unit": _unit_from_property_name(name)}

    provided = [letter for letter in DIMENSION_LETTERS if letter in by_letter]
    missing = [letter for letter in DIMENSION_LETTERS if letter not in by_letter]
    status = {
        "provided": provided,
        "missing": missing,
        "complete": bool(provided) and not missing,
        "option": _classify_measurement_option(bool(provided), properties),
    }
    logging.debug(f"MEASUREMENTS: provided={provided or 'none'} missing={missing or 'none'}")
    return {
        "measurements": [by_letter[letter] for letter in provided],
        "status": status,
        "properties": all_properties,
    }


def extract_manufacturing_options(line_item):
    options = {"link_attachment": None, "delivery_option": DEFAULT_DELIVERY_OPTION}

    variant_title = (line_item or {}).get("variant_title")
    if variant_title:
        last_segment = variant_title.split(" / ")[-1].strip()
        if any(label.split(" ")[0] in last_segment for label in LINK_ATTACHMENT_LABELS):
            options["link_attachment"] = last_segment

    for name, value in _iter_properties((line_item or {}).get("properties")):
        if name == "Delivery" and value.strip():
            options["delivery_option"] = value.strip()
    return options


def extract_line_item(line_item):
    """Runs measurement and manufacturing-option extraction for one Shopify line item."""
    line_item = line_item or {}
    result = extract_measurements(line_item.get("properties"))
    result["manufacturing_options"] = extract_manufacturing_options(line_item)
    return result


def measurements_by_letter(measurements):
    return {m["letter"]: {"value": m["value"], "unit": m["unit"]} for m in measurements or []}


def summarize_measurements(by_letter):
    """'A: 100 cm, B: 200 mm' style summary used in sheet notes."""
    by_letter = by_letter or {}
    return ", ".join(
        f"{letter}: {by_letter[letter]['value']} {by_letter[letter].get('unit', 'cm')}"
        for letter in DIMENSION_LETTERS if letter in by_letter
    )


def build_measurement_record(sku, extraction):
    """The per-item 'extracted_measurements' document kept with each sub-order."""
    return {
        "sku": sku,
        "measurements": measurements_by_letter(extraction["measurements"]),
        "provided": list(extraction["status"]["provided"]),
        "missing": list(extraction["status"]["missing"]),
        "complete": extraction["status"]["complete"],
        "option": extraction["status"]["option"],
        "properties": dict(extraction.get("properties") or {}),
    }
