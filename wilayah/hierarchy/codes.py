"""Hierarchical code composition.

A region's full code is its parent's full code followed by its own local
code; a province's full code is its local code. Full codes are otherwise
opaque string keys. Pure functions, no I/O.
"""

from collections.abc import Mapping

from wilayah.errors import CompositionError, InvalidCodeFormat
from wilayah.models.region import KIND_ORDER, ParentCodes, RegionKind

PARENT_KIND: dict[RegionKind, RegionKind | None] = {
    RegionKind.PROVINCE: None,
    RegionKind.REGENCY: RegionKind.PROVINCE,
    RegionKind.DISTRICT: RegionKind.REGENCY,
    RegionKind.VILLAGE: RegionKind.DISTRICT,
}

# Full-code length for each level in the national dataset (2 + 2 + 2 + 4).
DEFAULT_CODE_LENGTHS: dict[int, RegionKind] = {
    2: RegionKind.PROVINCE,
    4: RegionKind.REGENCY,
    6: RegionKind.DISTRICT,
    10: RegionKind.VILLAGE,
}


def compose_full_code(parent_full_code: str | None, local_code: str) -> str:
    """Return ``local_code`` under ``parent_full_code`` (or alone without a parent)."""
    if not parent_full_code:
        return local_code
    return f"{parent_full_code}{local_code}"


def derive_parent_codes(
    kind: RegionKind,
    province_code: str | None = None,
    regency_local: str | None = None,
    district_local: str | None = None,
) -> ParentCodes:
    """Compute every ancestor code needed for denormalized filtering.

    Raises:
        CompositionError: If a code required by ``kind`` is missing or empty.
    """
    if kind == RegionKind.PROVINCE:
        return ParentCodes()

    depth = kind.level - 1
    required = (province_code, regency_local, district_local)[:depth]
    if not all(required):
        msg = f"{kind.value} requires {depth} non-empty ancestor code(s), got {required!r}"
        raise CompositionError(msg)

    codes: dict[str, str] = {"province_code": province_code}
    if depth >= 2:
        regency_full = compose_full_code(province_code, regency_local)
        codes["regency_local_code"] = regency_local
        codes["regency_full_code"] = regency_full
    if depth >= 3:
        codes["district_local_code"] = district_local
        codes["district_full_code"] = compose_full_code(regency_full, district_local)
    return ParentCodes(**codes)


def infer_kind(
    full_code: str,
    code_lengths: Mapping[int, RegionKind] | None = None,
) -> RegionKind:
    """Infer a region's level from the structural form of its full code.

    Raises:
        InvalidCodeFormat: If the code is not all digits or its length
            matches no level.
    """
    lengths = code_lengths or DEFAULT_CODE_LENGTHS
    code = full_code.strip()
    if not code.isdigit() or len(code) not in lengths:
        msg = f"Invalid region code format: {full_code!r}"
        raise InvalidCodeFormat(msg, context={"full_code": full_code})
    return lengths[len(code)]


def child_kind(kind: RegionKind) -> RegionKind | None:
    """The level directly below ``kind``, None for villages."""
    if kind == RegionKind.VILLAGE:
        return None
    return KIND_ORDER[kind.level]
