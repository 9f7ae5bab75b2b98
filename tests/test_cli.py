"""
Tests for the command-line interface.

These tests verify:
1. Argument parsing works correctly for all commands
2. Error handling for missing files and invalid options
3. merge and info run end to end on small OIFITS files
"""

import pytest

from oiproc.cli.main import create_parser, main, parse_ranges
from oiproc.io import load_oifits, write_oifits


@pytest.fixture
def fits_files(make_oifits, tmp_path):
    """Two OIFITS files of target A observed on nights 58000 and 58001."""
    first = write_oifits(make_oifits(), tmp_path / "night1.fits")
    second = write_oifits(make_oifits(mjds=(58001.1, 58001.2, 58001.3, 58001.4)), tmp_path / "night2.fits")
    return [first, second]


class TestCLIParser:
    """Tests for CLI argument parsing."""

    def test_parser_creation(self):
        """Test that parser is created successfully."""
        parser = create_parser()
        assert parser is not None
        assert parser.prog == "oiproc"

    def test_version_flag(self, capsys):
        """Test --version flag."""
        parser = create_parser()
        with pytest.raises(SystemExit) as exc_info:
            parser.parse_args(["--version"])
        assert exc_info.value.code == 0

        captured = capsys.readouterr()
        assert "oiproc" in captured.out

    def test_merge_command_options(self):
        """Test merge command argument parsing."""
        parser = create_parser()
        args = parser.parse_args(
            [
                "merge",
                "a.fits",
                "b.fits",
                "-o",
                "merged.fits",
                "--baselines",
                "A0-B1",
                "C2-D0",
                "--mjds",
                "58000,58001",
                "--standard",
                "1",
            ]
        )

        assert args.command == "merge"
        assert [str(p) for p in args.inputs] == ["a.fits", "b.fits"]
        assert str(args.output) == "merged.fits"
        assert args.baselines == ["A0-B1", "C2-D0"]
        assert args.mjds == ["58000,58001"]
        assert args.standard == 1
        assert not args.overwrite

    def test_invalid_standard(self):
        """Test that only standards 1 and 2 are accepted."""
        parser = create_parser()
        with pytest.raises(SystemExit):
            parser.parse_args(["merge", "a.fits", "-o", "m.fits", "--standard", "3"])

    def test_info_requires_inputs(self):
        """Test that info needs at least one file."""
        parser = create_parser()
        with pytest.raises(SystemExit):
            parser.parse_args(["info"])

    def test_parse_ranges(self):
        """Test MIN,MAX parsing."""
        assert parse_ranges(["1,2", "3.5,4"]) == [{"min": 1.0, "max": 2.0}, {"min": 3.5, "max": 4.0}]
        assert parse_ranges(None) is None

        with pytest.raises(ValueError, match="expected MIN,MAX"):
            parse_ranges(["1"])


class TestCLIMain:
    """Tests for CLI main entry point."""

    def test_no_command_shows_help(self, capsys):
        """Test that running without command shows help."""
        result = main([])
        assert result == 0

        captured = capsys.readouterr()
        assert "oiproc" in captured.out

    def test_merge_missing_output(self, fits_files, capsys):
        """Test merge without -o."""
        result = main(["merge", *map(str, fits_files)])
        assert result == 1

        captured = capsys.readouterr()
        assert "Error" in captured.out
        assert "Missing output" in captured.out

    def test_merge_missing_input_file(self, tmp_path, capsys):
        """Test merge with nonexistent input."""
        result = main(["merge", str(tmp_path / "missing.fits"), "-o", str(tmp_path / "m.fits")])
        assert result == 1

        captured = capsys.readouterr()
        assert "Error" in captured.out
        assert "not found" in captured.out

    def test_merge_missing_config(self, tmp_path, capsys):
        """Test merge with nonexistent config file."""
        result = main(["merge", "--config", str(tmp_path / "missing.yaml")])
        assert result == 1

        captured = capsys.readouterr()
        assert "Error" in captured.out

    def test_merge_invalid_range(self, fits_files, tmp_path, capsys):
        """Test merge with an inverted MJD range."""
        result = main(["merge", *map(str, fits_files), "-o", str(tmp_path / "m.fits"), "--mjds", "2,1"])
        assert result == 1

        captured = capsys.readouterr()
        assert "Error: Invalid merge options" in captured.out

    def test_merge(self, fits_files, tmp_path, capsys):
        """Test an end-to-end merge."""
        output = tmp_path / "merged.fits"

        result = main(["merge", *map(str, fits_files), "-o", str(output)])
        assert result == 0

        merged = load_oifits(output)
        assert [t.ins_name for t in merged.oi_wavelengths] == ["SPECTRO", "SPECTRO_1"]
        assert len(merged.oi_datas) == 2

        captured = capsys.readouterr()
        assert "Data tables: 2" in captured.out

    def test_merge_with_selection(self, fits_files, tmp_path):
        """Test a merge restricted to one night."""
        output = tmp_path / "merged.fits"

        result = main(["merge", *map(str, fits_files), "-o", str(output), "--night", "58001"])
        assert result == 0

        merged = load_oifits(output)
        assert len(merged.oi_datas) == 1
        assert merged.oi_datas[0].get_column_range("MJD").min == pytest.approx(58001.1)

    def test_merge_existing_output(self, fits_files, tmp_path, capsys):
        """Test that an existing output is not replaced without --overwrite."""
        output = tmp_path / "merged.fits"
        assert main(["merge", *map(str, fits_files), "-o", str(output)]) == 0

        assert main(["merge", *map(str, fits_files), "-o", str(output)]) == 1
        assert "Error: Merge failed" in capsys.readouterr().out

        assert main(["merge", *map(str, fits_files), "-o", str(output), "--overwrite"]) == 0

    def test_merge_from_config(self, fits_files, tmp_path):
        """Test a merge described by a YAML file."""
        config_path = tmp_path / "merge.yaml"
        config_path.write_text(
            "inputs: [night1.fits, night2.fits]\n"
            "output: merged.fits\n"
            "standard: 1\n"
        )

        result = main(["merge", "--config", str(config_path)])
        assert result == 0

        merged = load_oifits(tmp_path / "merged.fits")
        assert len(merged.oi_datas) == 2

    def test_info(self, fits_files, capsys):
        """Test info output."""
        result = main(["info", *map(str, fits_files)])
        assert result == 0

        captured = capsys.readouterr()
        assert "Targets:" in captured.out
        assert "A: A" in captured.out
        assert "SPECTRO: 5 channels" in captured.out
        assert "58000" in captured.out
        assert "58001" in captured.out
        assert "Granules: 2" in captured.out

    def test_info_missing_file(self, tmp_path, capsys):
        """Test info with nonexistent file."""
        result = main(["info", str(tmp_path / "missing.fits")])
        assert result == 1

        captured = capsys.readouterr()
        assert "Error" in captured.out
