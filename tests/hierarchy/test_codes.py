"""Tests for hierarchical code composition and shape inference."""

import pytest

from wilayah.errors import CompositionError, InvalidArgument, InvalidCodeFormat
from wilayah.hierarchy.codes import (
    PARENT_KIND,
    child_kind,
    compose_full_code,
    derive_parent_codes,
    infer_kind,
)
from wilayah.models.region import ParentCodes, RegionKind


class TestComposeFullCode:
    def test_province_is_its_local_code(self) -> None:
        assert compose_full_code(None, "11") == "11"
        assert compose_full_code("", "11") == "11"

    def test_child_is_parent_followed_by_local(self) -> None:
        assert compose_full_code("11", "01") == "1101"
        assert compose_full_code("110101", "2001") == "1101012001"


class TestDeriveParentCodes:
    def test_province_has_no_ancestors(self) -> None:
        assert derive_parent_codes(RegionKind.PROVINCE) == ParentCodes()

    def test_regency(self) -> None:
        codes = derive_parent_codes(RegionKind.REGENCY, "11")
        assert codes.province_code == "11"
        assert codes.regency_full_code is None
        assert codes.district_full_code is None

    def test_district_scenario(self) -> None:
        codes = derive_parent_codes(RegionKind.DISTRICT, "11", "01")
        assert codes.province_code == "11"
        assert codes.regency_local_code == "01"
        assert codes.regency_full_code == "1101"
        assert codes.district_local_code is None

    def test_village_carries_every_ancestor(self) -> None:
        codes = derive_parent_codes(RegionKind.VILLAGE, "11", "01", "01")
        assert codes.regency_full_code == "1101"
        assert codes.district_local_code == "01"
        assert codes.district_full_code == "110101"
        assert codes.for_kind(RegionKind.DISTRICT) == "110101"

    def test_missing_scope_code_raises(self) -> None:
        with pytest.raises(CompositionError):
            derive_parent_codes(RegionKind.VILLAGE, "11", "01", None)

    def test_empty_scope_code_raises(self) -> None:
        with pytest.raises(CompositionError):
            derive_parent_codes(RegionKind.REGENCY, "")


class TestInferKind:
    @pytest.mark.parametrize(
        ("code", "kind"),
        [
            ("11", RegionKind.PROVINCE),
            ("1101", RegionKind.REGENCY),
            ("110101", RegionKind.DISTRICT),
            ("1101012001", RegionKind.VILLAGE),
        ],
    )
    def test_default_shapes(self, code: str, kind: RegionKind) -> None:
        assert infer_kind(code) == kind

    @pytest.mark.parametrize("code", ["", "1", "123", "11010", "abcd", "11-01", "12345678901"])
    def test_unknown_shape_rejected(self, code: str) -> None:
        with pytest.raises(InvalidCodeFormat):
            infer_kind(code)

    def test_invalid_code_format_is_an_invalid_argument(self) -> None:
        with pytest.raises(InvalidArgument) as exc_info:
            infer_kind("x")
        assert exc_info.value.http_status == 400

    def test_custom_lengths(self) -> None:
        lengths = {3: RegionKind.PROVINCE, 6: RegionKind.REGENCY}
        assert infer_kind("123", lengths) == RegionKind.PROVINCE
        with pytest.raises(InvalidCodeFormat):
            infer_kind("11", lengths)


class TestLevels:
    def test_parent_kind_chain(self) -> None:
        assert PARENT_KIND[RegionKind.PROVINCE] is None
        assert PARENT_KIND[RegionKind.VILLAGE] == RegionKind.DISTRICT

    def test_child_kind(self) -> None:
        assert child_kind(RegionKind.PROVINCE) == RegionKind.REGENCY
        assert child_kind(RegionKind.DISTRICT) == RegionKind.VILLAGE
        assert child_kind(RegionKind.VILLAGE) is None
