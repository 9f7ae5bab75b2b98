"""
Tests for OIFITS reading and writing.

These tests verify:
1. Written files are read back with the same tables, keywords and columns
2. The OIFITS standard is detected from CONTENT / OI_REVN
3. Missing files and non-OIFITS files raise clear errors
4. Existing outputs are only replaced with overwrite=True
"""

import numpy as np
import pytest

from oiproc.io import load_oifits, write_oifits
from oiproc.model.oifits import OIFitsStandard


class TestRoundTrip:
    """Tests for write_oifits followed by load_oifits."""

    def test_tables_and_keywords(self, oifits_single, tmp_path):
        """Test that table types, order and reference keywords survive."""
        path = write_oifits(oifits_single, tmp_path / "single.fits")

        loaded = load_oifits(path)

        assert [t.EXT_NAME for t in loaded.tables] == [
            "OI_TARGET",
            "OI_WAVELENGTH",
            "OI_ARRAY",
            "OI_VIS2",
            "OI_T3",
        ]
        assert loaded.oi_wavelengths[0].ins_name == "SPECTRO"
        assert loaded.oi_arrays[0].arr_name == "VLTI"
        assert loaded.oi_datas[0].ins_name == "SPECTRO"
        assert loaded.oi_datas[0].get_keyword("OI_REVN") == 2
        assert loaded.file_path == str((tmp_path / "single.fits").resolve())

    def test_columns(self, oifits_single, tmp_path):
        """Test column values and shapes."""
        path = write_oifits(oifits_single, tmp_path / "single.fits")

        loaded = load_oifits(path)
        loaded.analyze()

        original = oifits_single.oi_datas[0]
        vis2 = loaded.oi_datas[0]
        np.testing.assert_allclose(vis2.get_column("VIS2DATA"), original.get_column("VIS2DATA"))
        np.testing.assert_array_equal(vis2.get_sta_index(), original.get_sta_index())
        assert vis2.get_flag().shape == (4, 5)
        assert not vis2.get_flag().any()
        assert loaded.oi_target.target_names == ["A"]
        assert vis2.get_distinct_sta_names() == {"A0-B1", "A0-C2", "B1-C2"}

    def test_standard_detection(self, make_oifits, tmp_path):
        """Test that OIFITS 1 and 2 files are recognized."""
        v1 = write_oifits(make_oifits(version=OIFitsStandard.VERSION_1), tmp_path / "v1.fits")
        v2 = write_oifits(make_oifits(version=OIFitsStandard.VERSION_2), tmp_path / "v2.fits")

        assert load_oifits(v1).version == OIFitsStandard.VERSION_1
        assert load_oifits(v2).version == OIFitsStandard.VERSION_2

    def test_table_revisions(self, make_oifits, tmp_path):
        """Test that OI_REVN follows the table type: 1 for OI_CORR and OI_FLUX."""
        v2 = write_oifits(make_oifits(corr_name="CORR", with_flux=True), tmp_path / "v2.fits")
        v1 = write_oifits(make_oifits(version=OIFitsStandard.VERSION_1), tmp_path / "v1.fits")

        revisions = {t.EXT_NAME: t.get_keyword("OI_REVN") for t in load_oifits(v2).tables}
        assert revisions == {
            "OI_TARGET": 2,
            "OI_WAVELENGTH": 2,
            "OI_ARRAY": 2,
            "OI_CORR": 1,
            "OI_VIS2": 2,
            "OI_FLUX": 1,
        }
        assert load_oifits(v2).version == OIFitsStandard.VERSION_2

        assert {t.get_keyword("OI_REVN") for t in load_oifits(v1).tables} == {1}

    def test_corr_table(self, make_oifits, tmp_path):
        """Test OI_CORR and CORRNAME round trip."""
        path = write_oifits(make_oifits(corr_name="CORR"), tmp_path / "corr.fits")

        loaded = load_oifits(path)

        assert loaded.oi_corrs[0].corr_name == "CORR"
        assert loaded.oi_datas[0].corr_name == "CORR"


class TestErrors:
    """Tests for failure modes."""

    def test_missing_file(self, tmp_path):
        """Test that a missing file raises FileNotFoundError."""
        with pytest.raises(FileNotFoundError, match="not found"):
            load_oifits(tmp_path / "missing.fits")

    def test_not_oifits(self, tmp_path):
        """Test that a FITS file without OI tables is rejected."""
        from astropy.io import fits

        path = tmp_path / "image.fits"
        fits.PrimaryHDU(np.zeros((2, 2))).writeto(path)

        with pytest.raises(ValueError, match="Not an OIFITS file"):
            load_oifits(path)

    def test_overwrite(self, oifits_single, tmp_path):
        """Test that an existing output is kept unless overwrite=True."""
        path = tmp_path / "single.fits"
        write_oifits(oifits_single, path)

        with pytest.raises(OSError):
            write_oifits(oifits_single, path)

        write_oifits(oifits_single, path, overwrite=True)
        assert load_oifits(path).oi_target is not None
