"""
Merge per-chunk extraction results into a single document.
Title, summary, difficulty and other scalars come from the first chunk;
later chunks only contribute structural content.
"""

import logging

logger = logging.getLogger(__name__)


def _union_keywords(lists: list[list]) -> list:
    merged = []
    for keywords in lists:
        for keyword in keywords:
            # exact, case-sensitive match
            if keyword not in merged:
                merged.append(keyword)
    return merged


def _union_materials(lists: list[list]) -> list:
    seen = []
    merged = []
    for materials in lists:
        for material in materials:
            name = material.get('name') if isinstance(material, dict) else material
            if name is not None:
                if name in seen:
                    continue
                seen.append(name)
            merged.append(material)
    return merged


def _concat(lists: list[list]) -> list:
    merged = []
    for items in lists:
        merged.extend(items)
    return merged


def _merge_list_field(merged: dict, results: list[dict], key: str, combine):
    values = [r[key] for r in results if r.get(key) is not None]
    if not values:
        return
    malformed = [v for v in values if not isinstance(v, list)]
    if malformed:
        # left for the validator to report
        merged[key] = malformed[0]
        logger.debug("Chunk %s is %s, not a list; not merged",
                     key, type(malformed[0]).__name__)
        return
    merged[key] = combine(values)


def merge_results(results: list[dict]) -> dict:
    """
    Merge chunk results, given in chunk order.
    One result is returned as-is; for several, sections are concatenated in
    order and keywords/materials are de-duplicated unions. A chunk whose
    list field is not a list makes the merged field that value, so
    validation rejects it.
    """
    if not results:
        raise ValueError("Nothing to merge")
    if len(results) == 1:
        return results[0]

    merged = dict(results[0])
    _merge_list_field(merged, results, 'sections', _concat)
    _merge_list_field(merged, results, 'keywords', _union_keywords)
    _merge_list_field(merged, results, 'materials', _union_materials)

    sections = merged.get('sections')
    logger.debug("Merged %d chunk results into %d sections",
                 len(results), len(sections) if isinstance(sections, list) else 0)
    return merged
