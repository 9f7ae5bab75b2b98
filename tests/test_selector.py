"""
Tests for the Selector criteria bag.

These tests verify:
1. Empty selectors and reset()
2. Table selection bookkeeping (whole file vs extension numbers)
3. Generic include / exclude filters
4. The coarse match() predicate on data tables
5. Column classification helpers
"""

from oiproc.model.range import Range
from oiproc.processing.selector import (
    SPECIAL_COLUMN_NAMES,
    FilterValues,
    Selector,
    is_custom_filter,
    is_custom_filter_on_wavelengths,
    is_range_filter,
)


class TestSelectorState:
    """Tests for criteria bookkeeping."""

    def test_new_selector_is_empty(self):
        """Test that no criterion is set initially."""
        selector = Selector()

        assert selector.is_empty()
        assert not selector.has_table()
        assert not selector.has_filters()

    def test_reset(self):
        """Test that reset() clears every criterion."""
        selector = Selector()
        selector.target_uid = "A"
        selector.night_id = 58000
        selector.add_table("/data/night1.fits", 4)
        selector.add_filter("VIS2DATA", [Range(0, 1)])

        selector.reset()

        assert selector.is_empty()

    def test_add_table(self):
        """Test whole-file and per-extension selection."""
        selector = Selector()
        selector.add_table("/data/night1.fits")
        selector.add_table("/data/night2.fits", 4)
        selector.add_table("/data/night2.fits", 5)

        assert selector.get_tables("/data/night1.fits") == []
        assert selector.get_tables("/data/night2.fits") == [4, 5]
        assert selector.get_tables("/data/other.fits") is None
        assert not selector.is_empty()

    def test_include_and_exclude_filters(self):
        """Test that both polarities share one FilterValues per column."""
        selector = Selector()

        assert selector.add_including_filter("VIS2DATA", [Range(0, 1)])
        assert selector.add_excluding_filter("VIS2DATA", [Range(0.4, 0.5)])

        values = selector.get_filter_values("VIS2DATA")
        assert values.include_values == [Range(0, 1)]
        assert values.exclude_values == [Range(0.4, 0.5)]
        assert selector.has_filter("VIS2DATA")

    def test_empty_values_are_ignored(self):
        """Test that None or empty values add nothing."""
        selector = Selector()

        assert not selector.add_filter("VIS2DATA", None)
        assert not selector.add_excluding_filter("VIS2DATA", [])
        assert not selector.has_filters()

    def test_remove_filter(self):
        """Test filter removal."""
        selector = Selector()
        selector.add_filter("MJD", [Range(0, 1)])

        assert selector.remove_filter("MJD")
        assert not selector.remove_filter("MJD")
        assert selector.is_empty()

    def test_filter_values_is_empty(self):
        """Test FilterValues emptiness."""
        assert FilterValues("MJD").is_empty()
        assert not FilterValues("MJD", exclude_values=[Range(0, 1)]).is_empty()

    def test_repr_lists_set_criteria(self):
        """Test the summary string."""
        selector = Selector()
        selector.target_uid = "A"
        selector.baselines = ["A0-B1"]

        text = repr(selector)

        assert "target_uid=A" in text
        assert "baselines=['A0-B1']" in text
        assert "night_id" not in text


class TestSelectorMatch:
    """Tests for the coarse table predicate."""

    def test_empty_selector_matches(self, oifits_single):
        """Test that an empty selector accepts every table."""
        selector = Selector()

        assert all(selector.match(t) for t in oifits_single.oi_datas)

    def test_target_uid(self, oifits_single):
        """Test target matching on normalized names."""
        vis2 = oifits_single.oi_datas[0]
        selector = Selector()

        selector.target_uid = "a"
        assert selector.match(vis2)

        selector.target_uid = "B"
        assert not selector.match(vis2)

    def test_instrument_mode(self, oifits_single):
        """Test INSNAME matching on normalized names."""
        vis2 = oifits_single.oi_datas[0]
        selector = Selector()

        selector.ins_mode_uid = "spectro"
        assert selector.match(vis2)

        selector.ins_mode_uid = "OTHER"
        assert not selector.match(vis2)

    def test_night(self, oifits_single):
        """Test night matching."""
        vis2 = oifits_single.oi_datas[0]
        selector = Selector()

        selector.night_id = 58000
        assert selector.match(vis2)

        selector.night_id = 58001
        assert not selector.match(vis2)

    def test_tables(self, oifits_single):
        """Test file and extension matching."""
        vis2, oi_t3 = oifits_single.oi_datas
        selector = Selector()
        selector.add_table("/data/night1.fits", vis2.ext_nb)

        assert selector.match(vis2)
        assert not selector.match(oi_t3)

        selector.reset()
        selector.add_table("/data/other.fits")
        assert not selector.match(vis2)

    def test_baselines(self, oifits_single):
        """Test baseline matching in any station order."""
        vis2 = oifits_single.oi_datas[0]
        selector = Selector()

        selector.baselines = ["C2-B1"]
        assert selector.match(vis2)

        selector.baselines = ["A0-D0"]
        assert not selector.match(vis2)

    def test_mjd_ranges(self, oifits_single):
        """Test MJD overlap."""
        vis2 = oifits_single.oi_datas[0]
        selector = Selector()

        selector.mjd_ranges = [Range(58000.35, 58001.0)]
        assert selector.match(vis2)

        selector.mjd_ranges = [Range(58001.0, 58002.0)]
        assert not selector.match(vis2)

    def test_wavelength_ranges(self, oifits_single):
        """Test wavelength overlap using the referenced OI_WAVELENGTH."""
        vis2 = oifits_single.oi_datas[0]
        selector = Selector()

        selector.wavelength_ranges = [Range(2.4e-6, 3.0e-6)]
        assert selector.match(vis2)

        selector.wavelength_ranges = [Range(3.0e-6, 4.0e-6)]
        assert not selector.match(vis2)

    def test_generic_range_filter(self, oifits_single):
        """Test that including range filters must overlap the column range."""
        vis2 = oifits_single.oi_datas[0]
        selector = Selector()

        selector.add_filter("VIS2DATA", [Range(0.3, 0.5)])
        assert selector.match(vis2)

        selector.add_filter("VIS2DATA", [Range(0.5, 0.9)])
        assert not selector.match(vis2)

    def test_missing_column_does_not_reject(self, oifits_single):
        """Test that an undefined column summary never rejects a table."""
        vis2 = oifits_single.oi_datas[0]
        selector = Selector()
        selector.add_filter("FOO", [Range(0, 1)])

        assert selector.match(vis2)


class TestColumnClassification:
    """Tests for the filter routing helpers."""

    def test_range_filters(self):
        """Test which columns take ranges."""
        assert is_range_filter("VIS2DATA")
        assert is_range_filter("MJD")
        assert not is_range_filter("STA_INDEX")
        assert not is_range_filter("NIGHT_ID")

    def test_custom_filters(self):
        """Test which columns have dedicated filters."""
        assert is_custom_filter("MJD")
        assert is_custom_filter("EFF_WAVE")
        assert is_custom_filter("STA_CONF")
        assert not is_custom_filter("VIS2DATA")
        assert not is_custom_filter("UCOORD")

        for name in SPECIAL_COLUMN_NAMES:
            assert is_custom_filter(name)
        assert {"TARGET_ID", "NIGHT_ID", "STA_INDEX"} <= set(SPECIAL_COLUMN_NAMES)

    def test_wavelength_filters(self):
        """Test which columns are evaluated on OI_WAVELENGTH."""
        assert is_custom_filter_on_wavelengths("EFF_WAVE")
        assert is_custom_filter_on_wavelengths("EFF_BAND")
        assert not is_custom_filter_on_wavelengths("MJD")
