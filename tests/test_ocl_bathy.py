"""
Tests for the bathymetry companion files.
"""

import io

import pytest

from ocl_bathy import (
    BathyReader,
    in_bathy_band,
    main,
    station_positions,
    write_positions,
    zero_lat_lon_okay,
)
from ocl_format import BathymetryError

from ocl_builder import build_station


class TestBathyReader:

    def test_depth_is_flipped_positive_down(self):
        bathy = BathyReader(io.StringIO('-30.500  45.250 7 -3012.5\n'))
        rec = bathy.next_record()
        assert rec.lon == pytest.approx(-30.5)
        assert rec.lat == pytest.approx(45.25)
        assert rec.ordinal == 7
        assert rec.depth == pytest.approx(3012.5)

    def test_one_record_per_call(self):
        bathy = BathyReader(io.StringIO('0 0 0 -10\n0 0 1 -20\n'))
        assert bathy.next_record().depth == pytest.approx(10.0)
        assert bathy.next_record().depth == pytest.approx(20.0)
        assert bathy.line_number == 2

    def test_short_file(self):
        bathy = BathyReader(io.StringIO('0 0 0 -10\n'))
        bathy.next_record()
        with pytest.raises(BathymetryError):
            bathy.next_record()

    def test_malformed_line(self):
        with pytest.raises(BathymetryError):
            BathyReader(io.StringIO('0 0 -10\n')).next_record()
        with pytest.raises(BathymetryError):
            BathyReader(io.StringIO('0 0 x -10\n')).next_record()


def test_bathy_band():
    assert in_bathy_band(72.0)
    assert in_bathy_band(-72.0)
    assert not in_bathy_band(72.5)


def test_zero_lat_lon_okay():
    assert zero_lat_lon_okay('1000', 'lat')
    assert not zero_lat_lon_okay('1200', 'lat')
    assert zero_lat_lon_okay('1200', 'lon')
    assert not zero_lat_lon_okay('1210', 'lon')
    with pytest.raises(ValueError):
        zero_lat_lon_okay('1000', 'depth')


class TestPositions:
    """Positions file written ahead of a grid-track run."""

    @pytest.fixture
    def stations(self):
        return (build_station(lat=45.25, lon=-30.5)
                + build_station(lat=0.0, lon=-30.5)
                + build_station(lat=80.0, lon=-30.5))

    def test_bad_positions_get_placeholder(self, stations):
        positions = list(station_positions(io.StringIO(stations), '1200'))
        assert positions[0] == pytest.approx((-30.5, 45.25, 0))
        assert positions[1] == (70.0, 30.0, 1)
        assert positions[2] == (70.0, 30.0, 2)

    def test_zero_latitude_on_equator_square(self, stations):
        positions = list(station_positions(io.StringIO(stations), '1000'))
        assert positions[1] == pytest.approx((-30.5, 0.0, 1))

    def test_write_positions(self, stations):
        out = io.StringIO()
        assert write_positions(io.StringIO(stations), out, '1200') == 3
        lines = out.getvalue().splitlines()
        assert lines[0] == '-30.500000  45.250000 0'
        assert lines[1] == '70.000000  30.000000 1'

    def test_command_line(self, stations, tmp_path, capsys):
        path = tmp_path / 'stations.ocl'
        path.write_text(stations)
        assert main(['1200', '-40', '25', '-i', str(path)]) == 0
        lines = capsys.readouterr().out.splitlines()
        assert lines == ['-30.500000  45.250000 0',
                         '-40.000000  25.000000 1',
                         '-40.000000  25.000000 2']

    def test_command_line_missing_input(self, tmp_path, capsys):
        assert main(['1200', '-i', str(tmp_path / 'absent.ocl')]) == 1
        assert 'oclpos: error' in capsys.readouterr().err
