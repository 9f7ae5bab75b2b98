"""
Shared pytest fixtures for oiproc tests.

This module provides commonly used fixtures to reduce duplication across test files.
All fixtures are automatically available to tests without explicit imports.

Fixtures defined here:
- make_oifits: Factory building synthetic in-memory OIFITS files
- oifits_single: One analyzed OIFITS 2 file (target "A", OI_VIS2 + OI_T3)
- oifits_two_targets: One file whose OI_VIS2 interleaves two targets
- collection: Analyzed collection of two files on two nights
"""

import numpy as np
import pytest

from oiproc.model.collection import OIFitsCollection
from oiproc.model.oifits import OIFitsFile, OIFitsStandard
from oiproc.model.tables import OIT3, OIArray, OICorr, OIFlux, OITarget, OIVis2, OIWavelength


# Four-telescope array: STA_INDEX -> STA_NAME
STATIONS = {1: "A0", 2: "B1", 3: "C2", 4: "D0"}

# Baselines of the synthetic OI_VIS2 rows (A0-B1, A0-C2, B1-C2, A0-B1)
VIS2_STA_INDEX = [[1, 2], [1, 3], [2, 3], [1, 2]]


# =============================================================================
# Table builders
# =============================================================================


def make_target(name="A", target_id=1):
    return OITarget(
        columns={
            "TARGET_ID": np.array([target_id], dtype=np.int16),
            "TARGET": np.array([name]),
            "RAEP0": np.array([10.0]),
            "DECEP0": np.array([-20.0]),
        }
    )


def make_wavelength(ins_name="SPECTRO", n_waves=5, lambda_min=1.5e-6, lambda_max=2.5e-6):
    return OIWavelength(
        keywords={"INSNAME": ins_name},
        columns={
            "EFF_WAVE": np.linspace(lambda_min, lambda_max, n_waves),
            "EFF_BAND": np.full(n_waves, 1e-7),
        },
    )


def make_array(arr_name="VLTI"):
    return OIArray(
        keywords={"ARRNAME": arr_name},
        columns={
            "TEL_NAME": np.array([f"AT{i}" for i in STATIONS]),
            "STA_NAME": np.array(list(STATIONS.values())),
            "STA_INDEX": np.array(list(STATIONS), dtype=np.int16),
            "DIAMETER": np.full(len(STATIONS), 1.8),
        },
    )


def make_vis2(
    ins_name="SPECTRO",
    arr_name="VLTI",
    mjds=(58000.1, 58000.2, 58000.3, 58000.4),
    n_waves=5,
    target_id=1,
    corr_name=None,
):
    n_rows = len(mjds)
    keywords = {"INSNAME": ins_name, "ARRNAME": arr_name}
    if corr_name is not None:
        keywords["CORRNAME"] = corr_name

    sta_index = (VIS2_STA_INDEX * (n_rows // len(VIS2_STA_INDEX) + 1))[:n_rows]
    return OIVis2(
        keywords=keywords,
        columns={
            "TARGET_ID": np.full(n_rows, target_id, dtype=np.int16),
            "TIME": np.zeros(n_rows),
            "MJD": np.array(mjds, dtype=np.float64),
            "INT_TIME": np.ones(n_rows),
            # VIS2DATA[i, j] = 0.1 * i + 0.01 * j
            "VIS2DATA": 0.1 * np.arange(n_rows)[:, None] + 0.01 * np.arange(n_waves)[None, :],
            "VIS2ERR": np.full((n_rows, n_waves), 0.01),
            "UCOORD": np.linspace(10.0, 40.0, n_rows),
            "VCOORD": np.linspace(-5.0, 5.0, n_rows),
            "STA_INDEX": np.array(sta_index, dtype=np.int16),
            "FLAG": np.zeros((n_rows, n_waves), dtype=bool),
        },
    )


def make_t3(ins_name="SPECTRO", arr_name="VLTI", mjds=(58000.1, 58000.2), n_waves=5):
    n_rows = len(mjds)
    return OIT3(
        keywords={"INSNAME": ins_name, "ARRNAME": arr_name},
        columns={
            "TARGET_ID": np.ones(n_rows, dtype=np.int16),
            "TIME": np.zeros(n_rows),
            "MJD": np.array(mjds, dtype=np.float64),
            "INT_TIME": np.ones(n_rows),
            "T3AMP": np.full((n_rows, n_waves), 0.5),
            "T3AMPERR": np.full((n_rows, n_waves), 0.05),
            "T3PHI": np.zeros((n_rows, n_waves)),
            "T3PHIERR": np.ones((n_rows, n_waves)),
            "U1COORD": np.ones(n_rows),
            "V1COORD": np.ones(n_rows),
            "U2COORD": np.ones(n_rows),
            "V2COORD": np.ones(n_rows),
            "STA_INDEX": np.array([[1, 2, 3]] * n_rows, dtype=np.int16),
            "FLAG": np.zeros((n_rows, n_waves), dtype=bool),
        },
    )


def make_corr(corr_name="CORR1"):
    return OICorr(
        keywords={"CORRNAME": corr_name, "NDATA": 4},
        columns={
            "IINDX": np.array([1, 2], dtype=np.int32),
            "JINDX": np.array([2, 3], dtype=np.int32),
            "CORR": np.array([0.1, 0.2]),
        },
    )


def make_flux(ins_name="SPECTRO", arr_name="VLTI", mjds=(58000.1, 58000.2), n_waves=5):
    n_rows = len(mjds)
    return OIFlux(
        keywords={"INSNAME": ins_name, "ARRNAME": arr_name},
        columns={
            "TARGET_ID": np.ones(n_rows, dtype=np.int16),
            "MJD": np.array(mjds, dtype=np.float64),
            "INT_TIME": np.ones(n_rows),
            "FLUXDATA": np.full((n_rows, n_waves), 2.0),
            "FLUXERR": np.full((n_rows, n_waves), 0.2),
            "STA_INDEX": np.array([[1]] * n_rows, dtype=np.int16),
            "FLAG": np.zeros((n_rows, n_waves), dtype=bool),
        },
    )


# =============================================================================
# File Fixtures
# =============================================================================


@pytest.fixture
def make_oifits():
    """Factory building an analyzed synthetic OIFITS file.

    Arguments of the returned function:
    - target: target name of the single OI_TARGET row
    - ins_names: one OI_WAVELENGTH per name, one OI_VIS2 referencing each
    - mjds: MJD of the OI_VIS2 rows
    - version: OIFITS standard
    - file_path: optional path (file id)
    - with_t3: add an OI_T3 referencing the first instrument mode
    - corr_name: add an OI_CORR referenced by every OI_VIS2
    - with_flux: add an OI_FLUX referencing the first instrument mode
    """

    def _make(
        target="A",
        ins_names=("SPECTRO",),
        mjds=(58000.1, 58000.2, 58000.3, 58000.4),
        version=OIFitsStandard.VERSION_2,
        file_path=None,
        with_t3=False,
        corr_name=None,
        with_flux=False,
    ):
        oi_fits = OIFitsFile(version, file_path=file_path)
        oi_fits.add_table(make_target(target))
        for ins_name in ins_names:
            oi_fits.add_table(make_wavelength(ins_name))
        oi_fits.add_table(make_array())
        if corr_name is not None:
            oi_fits.add_table(make_corr(corr_name))
        for ins_name in ins_names:
            oi_fits.add_table(make_vis2(ins_name=ins_name, mjds=mjds, corr_name=corr_name))
        if with_t3:
            oi_fits.add_table(make_t3(ins_name=ins_names[0]))
        if with_flux:
            oi_fits.add_table(make_flux(ins_name=ins_names[0]))
        oi_fits.analyze()
        return oi_fits

    return _make


@pytest.fixture
def oifits_single(make_oifits):
    """One OIFITS 2 file: OI_TARGET, OI_WAVELENGTH, OI_ARRAY, OI_VIS2 (4 rows), OI_T3 (2 rows)."""
    return make_oifits(file_path="/data/night1.fits", with_t3=True)


@pytest.fixture
def oifits_two_targets():
    """OIFITS 2 file with targets A (id 1) and B (id 2) interleaved in one OI_VIS2."""
    oi_fits = OIFitsFile(OIFitsStandard.VERSION_2, file_path="/data/pair.fits")
    oi_fits.add_table(
        OITarget(
            columns={
                "TARGET_ID": np.array([1, 2], dtype=np.int16),
                "TARGET": np.array(["A", "B"]),
                "RAEP0": np.array([10.0, 11.0]),
                "DECEP0": np.array([-20.0, -21.0]),
            }
        )
    )
    oi_fits.add_table(make_wavelength())
    oi_fits.add_table(make_array())
    vis2 = make_vis2()
    vis2.set_column("TARGET_ID", np.array([1, 2, 1, 2], dtype=np.int16))
    oi_fits.add_table(vis2)
    oi_fits.analyze()
    return oi_fits


@pytest.fixture
def collection(make_oifits):
    """Collection of two files of target "A" on nights 58000 and 58001.

    The second file spells the target "a" and the instrument "spectro"
    to exercise alias resolution.
    """
    first = make_oifits(file_path="/data/night1.fits")
    second = make_oifits(
        target="a",
        ins_names=("spectro",),
        mjds=(58001.1, 58001.2, 58001.3, 58001.4),
        file_path="/data/night2.fits",
    )
    return OIFitsCollection.create([first, second])
