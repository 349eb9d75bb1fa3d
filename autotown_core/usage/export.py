from __future__ import annotations

import csv
import io
from typing import Iterable, Iterator, Sequence

from autotown_core.usage.types import FoundController, GitLabel, format_rfc3339

EXPORT_HEADER: tuple[str, ...] = (
    "timestamp",
    "oldest",
    "count",
    "uuid",
    "name",
    "git_hash",
    "git_tag",
    "ref",
    "uavo_hash",
    "gcs_os",
    "gcs_os_abbrev",
    "gcs_arch",
    "gcs_version",
    "country",
    "region",
    "city",
    "lat",
    "lon",
)

_LINUX_PREFIXES = ("Ubuntu", "openSUSE", "Gentoo", "Arch")


def abbrev_os(name: str) -> str:
    if name.startswith("Windows"):
        return "Windows"
    if name.startswith(_LINUX_PREFIXES):
        return "Linux"
    if name.startswith("OS X"):
        return "Mac"
    return name


def git_describe(git_hash: str, labels: Sequence[GitLabel]) -> list[GitLabel]:
    """Labels pointing at ``git_hash``; short hashes match by prefix.

    Tags sort ahead of branches so the first entry is the most specific name.
    """
    needle = git_hash.strip().lower()
    if not needle:
        return []
    matches = [label for label in labels if label.hash.lower().startswith(needle)]
    matches.sort(key=lambda label: (label.kind != "tag", label.label))
    return matches


def format_float(value: float) -> str:
    text = repr(float(value))
    if text.endswith(".0"):
        return text[:-2]
    return text


def export_row(controller: FoundController, labels: Sequence[GitLabel]) -> list[str]:
    ref = ""
    described = git_describe(controller.git_hash, labels)
    if described:
        ref = described[0].label
    return [
        format_rfc3339(controller.timestamp),
        format_rfc3339(controller.oldest),
        str(controller.count),
        controller.uuid,
        controller.name,
        controller.git_hash,
        controller.git_tag,
        ref,
        controller.uavo_hash,
        controller.gcs_os,
        abbrev_os(controller.gcs_os),
        controller.gcs_arch,
        controller.gcs_version,
        controller.country,
        controller.region,
        controller.city,
        format_float(controller.lat),
        format_float(controller.lon),
    ]


def iter_controller_csv(
    controllers: Iterable[FoundController],
    labels: Sequence[GitLabel],
) -> Iterator[str]:
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")

    def _drain() -> str:
        text = buffer.getvalue()
        buffer.seek(0)
        buffer.truncate(0)
        return text

    writer.writerow(EXPORT_HEADER)
    yield _drain()
    for controller in controllers:
        writer.writerow(export_row(controller, labels))
        yield _drain()
