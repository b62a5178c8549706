"""
Map API documents to gauge observations.

These functions are pure: they read document nodes and yield Observation
tuples, nothing else. Fields that are neither numeric nor requested as labels
are dropped.
"""

import re
from collections import Counter
from typing import NamedTuple

_INVALID_NAME_CHARS = re.compile(r"[^a-zA-Z0-9_:]")


class Observation(NamedTuple):
    name: str
    labels: dict
    value: float
    kind: str = "gauge"

    @property
    def identity(self):
        return self.name, tuple(sorted(self.labels.items()))


def metric_name(*parts):
    name = _INVALID_NAME_CHARS.sub("_", "_".join(p for p in parts if p))
    if name[:1].isdigit():
        name = "_" + name
    return name


def flatten_numeric(node, prefix, labels, suffix="", skip=()):
    """One <prefix>_<key><suffix> observation per numeric field of a mapping"""
    for key, value in node.items():
        if key in skip or not value.is_numeric():
            continue
        number = value.as_float()
        if number is None:
            continue
        yield Observation(metric_name(prefix, key) + suffix, dict(labels), number)


def flatten_nested(node, prefix, key, labels, suffix=""):
    """Numeric fields of a child mapping, e.g. memory -> <prefix>_memory_total_bytes"""
    return flatten_numeric(node.get(key), metric_name(prefix, key), labels, suffix=suffix)


def text_field(key):
    return lambda item: item.get(key).as_text()


def flag_field(key):
    return lambda item: "1" if item.get(key).is_truthy_flag() else "0"


def flatten_info(items, prefix, fields, labels, count_by=None):
    """
    One <prefix>_info gauge with value 1 per mapping in a sequence.

    fields maps label names to callables extracting the label value from an
    item (see text_field and flag_field). With count_by set, the items are
    also grouped by that field and one <prefix>_<count_by>_count gauge per
    distinct value is yielded once the sequence is exhausted.
    """
    counts = Counter()
    for item in items:
        if not item.is_mapping:
            continue
        info_labels = dict(labels)
        for label, extract in fields.items():
            info_labels[label] = extract(item)
        yield Observation(metric_name(prefix, "info"), info_labels, 1.0)
        if count_by:
            counts[item.get(count_by).as_text()] += 1

    for group, count in sorted(counts.items()):
        yield Observation(metric_name(prefix, count_by, "count"), {count_by: group}, float(count))
