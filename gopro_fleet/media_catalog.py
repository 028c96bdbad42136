"""
Media list resolution

Turns the raw /gopro/media/list response into a flat list of downloadable
files. Grouped captures (burst, time lapse, night lapse) are reported by the
camera as one record with first/last member IDs ("b"/"l"); they are expanded
into one entry per member file.

Raw listing shape:
    {"media": [{"d": "100GOPRO", "fs": [{"n": "G0010001.JPG", "s": "3000000",
                                          "cre": "1700000000", "b": "1", "l": "3",
                                          "raw": "1"}, ...]}, ...]}
"""
import logging
import re
from dataclasses import dataclass
from typing import List, NamedTuple, Optional

logger = logging.getLogger(__name__)

# GXXXYYYY.EXT - XXX is the group ID, YYYY the member ID
GROUP_FILENAME_RE = re.compile(r"^G(\d{3})(\d{4})\.(.+)$")
RAW_EXTENSION = "GPR"


@dataclass(frozen=True)
class MediaFile:
    folder: str
    name: str
    size: int = 0
    created: str = ""
    group_id: Optional[str] = None
    group_member_id: Optional[str] = None

    @property
    def is_group_item(self) -> bool:
        return self.group_id is not None

    @property
    def camera_path(self) -> str:
        """Path relative to DCIM, as used by download and delete"""
        return f"{self.folder}/{self.name}"

    def to_dict(self) -> dict:
        return {
            "folder": self.folder,
            "name": self.name,
            "size": self.size,
            "created": self.created,
            "is_group_item": self.is_group_item,
            "group_id": self.group_id,
            "group_member_id": self.group_member_id,
        }


class GroupName(NamedTuple):
    group_id: str
    member_id: str
    extension: str

    def member_filename(self, member: int) -> str:
        return f"G{self.group_id}{member:04d}.{self.extension}"


def parse_group_filename(name: str) -> Optional[GroupName]:
    """Parse a grouped-capture filename, or None if it doesn't follow GXXXYYYY.EXT"""
    match = GROUP_FILENAME_RE.match(name or "")
    if not match:
        return None
    return GroupName(match.group(1), match.group(2), match.group(3))


def _to_int(value, default: int = 0) -> int:
    # API returns numbers as strings, sometimes missing
    try:
        return int(value)
    except (ValueError, TypeError):
        return default


def _has_raw(record: dict) -> bool:
    return record.get("raw") in ("1", 1)


def _raw_companion_name(name: str) -> str:
    return re.sub(r"\.(JPG|jpg)$", f".{RAW_EXTENSION}", name)


def _expand_group(folder: str, record: dict, group: GroupName, created: str) -> List[MediaFile]:
    first = _to_int(record.get("b"))
    last = _to_int(record.get("l"))
    total_size = _to_int(record.get("s"))
    with_raw = _has_raw(record)

    files = []
    for member in range(first, last + 1):
        member_id = f"{member:04d}"
        files.append(MediaFile(
            folder=folder,
            name=group.member_filename(member),
            # The camera reports one size for the whole group; it goes on the first member
            size=total_size if member == first else 0,
            created=created,
            group_id=group.group_id,
            group_member_id=member_id,
        ))
        if with_raw:
            files.append(MediaFile(
                folder=folder,
                name=f"G{group.group_id}{member_id}.{RAW_EXTENSION}",
                size=0,
                created=created,
                group_id=group.group_id,
                group_member_id=member_id,
            ))
    return files


def _single_entry(folder: str, record: dict, created: str) -> List[MediaFile]:
    name = record.get("n", "")
    files = [MediaFile(folder=folder, name=name, size=_to_int(record.get("s")), created=created)]
    if _has_raw(record):
        # RAW size is not reported separately
        files.append(MediaFile(folder=folder, name=_raw_companion_name(name), size=0, created=created))
    return files


def resolve_media_list(raw: Optional[dict]) -> List[MediaFile]:
    """Flatten a raw media listing, expanding grouped captures.

    Order follows the camera: folder by folder, record by record. Nothing is
    sorted or de-duplicated, so listing the same card twice gives the same list.
    """
    files: List[MediaFile] = []
    if not raw or not raw.get("media"):
        return files

    for directory in raw["media"]:
        folder = directory.get("d", "")
        for record in directory.get("fs") or []:
            created = str(record.get("cre") or record.get("mod") or "")

            if record.get("b") is not None and record.get("l") is not None:
                group = parse_group_filename(record.get("n", ""))
                if group:
                    files.extend(_expand_group(folder, record, group, created))
                    continue
                logger.warning(f"Grouped file doesn't match expected pattern: {record.get('n')}")

            files.extend(_single_entry(folder, record, created))

    return files


def total_size(files: List[MediaFile]) -> int:
    return sum(f.size for f in files)
