"""
Tests for key converters and request count validation.
"""

import numpy as np
import pytest

from nnrec.core.errors import IncompatibleIdError
from nnrec.vector.index import U16_MAX, U32_MAX, as_is, as_u32, as_usize, check_count


class TestKeyConverters:
    """Key conversion into the backend's canonical key type."""

    def test_as_u32_accepts_integers(self):
        assert as_u32(0) == 0
        assert as_u32(U32_MAX) == U32_MAX
        assert as_u32(np.int64(42)) == 42
        assert type(as_u32(np.uint32(7))) is int

    @pytest.mark.parametrize("value", [-1, U32_MAX + 1])
    def test_as_u32_rejects_out_of_range(self, value):
        with pytest.raises(IncompatibleIdError, match="out of range"):
            as_u32(value)

    @pytest.mark.parametrize("value", ["12", 1.5, None, True])
    def test_as_u32_rejects_non_integers(self, value):
        with pytest.raises(IncompatibleIdError):
            as_u32(value)

    def test_as_usize_range(self):
        assert as_usize(U32_MAX + 1) == U32_MAX + 1
        assert as_usize(2 ** 64 - 1) == 2 ** 64 - 1
        with pytest.raises(IncompatibleIdError):
            as_usize(2 ** 64)

    def test_as_is(self):
        assert as_is("listing-9") == "listing-9"
        assert as_is((1, 2)) == (1, 2)
        with pytest.raises(IncompatibleIdError, match="not hashable"):
            as_is(["unhashable"])

    def test_error_carries_subject(self):
        with pytest.raises(IncompatibleIdError) as exc_info:
            as_u32("abc")
        assert exc_info.value.subject_id == "abc"


class TestCheckCount:
    """Requested result counts stay within the u16 range."""

    def test_valid_counts(self):
        assert check_count(0) == 0
        assert check_count(10) == 10
        assert check_count(np.int32(5)) == 5
        assert check_count(U16_MAX) == U16_MAX

    @pytest.mark.parametrize("value", [-1, U16_MAX + 1, 2.0, "3", True])
    def test_invalid_counts(self, value):
        with pytest.raises(ValueError):
            check_count(value)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
