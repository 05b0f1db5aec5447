"""
OCL Bathymetry Companion Files
==============================
Reads and writes the ASCII side files used to check station bottom depths
against a bathymetry database:

  positions file — one line per station, ``lon lat ordinal``, written by
                   :func:`write_positions` and fed to a grid-track tool
                   (e.g. GMT ``grdtrack`` over the Sandwell/Smith grid)
  bathy file     — the track tool's output, ``lon lat ordinal depth`` with
                   depth negative-down; read back in lockstep with the OCL
                   file by :class:`BathyReader`

The two files only line up if every station in the OCL file produces
exactly one line, so stations with implausible positions are written with
a placeholder location instead of being dropped.
"""

import argparse
import logging
import math
import sys
from dataclasses import dataclass

from ocl_format import BathymetryError, FieldReader, OCLError


logger = logging.getLogger(__name__)

# Latitude band covered by the satellite-derived grid
BATHY_LAT_LIMIT = 72.0

# Values below this magnitude count as an exact zero lat or lon
ZERO_TOLERANCE = 1e-7


@dataclass(frozen=True)
class BathyRecord:
    lon: float
    lat: float
    ordinal: int
    depth: float    # m, positive down


# ---------------------------------------------------------------------------
# Bathy file (lon lat ordinal depth)
# ---------------------------------------------------------------------------

class BathyReader:
    """Forward-only reader over a bathy file, one record per station.

    Parameters
    ----------
    fp : file-like
        Open text stream; the caller owns opening and closing it.
    """

    def __init__(self, fp):
        self.fp = fp
        self.line_number = 0

    def next_record(self):
        """Read the next line and return a :class:`BathyRecord`.

        The depth is sign-flipped on the way in, so it is positive-down like
        every other depth in the package.

        Raises
        ------
        BathymetryError
            The file ran out, or the line does not hold four fields.
        """
        line = self.fp.readline()
        self.line_number += 1
        if isinstance(line, bytes):
            line = line.decode('ascii', errors='replace')
        if not line:
            raise BathymetryError(
                f'bathy file ended at line {self.line_number}; '
                f'it must hold one line per station')

        fields = line.split()
        if len(fields) < 4:
            raise BathymetryError(
                f'bathy line {self.line_number}: expected '
                f'"lon lat ordinal depth", got {line.strip()!r}')
        try:
            lon = float(fields[0])
            lat = float(fields[1])
            ordinal = int(float(fields[2]))
            depth = -float(fields[3])
        except ValueError as e:
            raise BathymetryError(f'bathy line {self.line_number}: {e}') from e

        return BathyRecord(lon, lat, ordinal, depth)


def in_bathy_band(lat, limit=BATHY_LAT_LIMIT):
    """True if ``lat`` lies inside the latitude band the grid covers."""
    return -limit <= lat <= limit


# ---------------------------------------------------------------------------
# Zero lat/lon plausibility
# ---------------------------------------------------------------------------

def is_zero(x):
    return -ZERO_TOLERANCE < x < ZERO_TOLERANCE


def zero_lat_lon_okay(wmo_square, axis):
    """Whether an exact-zero coordinate is believable for this WMO square.

    A 10-degree WMO square designator ``QLLL`` straddles the equator when
    its latitude digit (index 1) is '0', and the prime meridian when its
    two-digit longitude tens (indices 2-3) are '00'.

    Parameters
    ----------
    wmo_square : str
        Four-character WMO square designator, usually taken from the OCL
        file name.
    axis : {'lat', 'lon'}
    """
    if axis == 'lat':
        return len(wmo_square) > 1 and wmo_square[1] == '0'
    if axis == 'lon':
        return len(wmo_square) > 3 and wmo_square[2:4] == '00'
    raise ValueError(f"axis must be 'lat' or 'lon', got {axis!r}")


# ---------------------------------------------------------------------------
# Positions file (lon lat ordinal)
# ---------------------------------------------------------------------------

def station_positions(fp, wmo_square, placeholder=(70.0, 30.0)):
    """Yield ``(lon, lat, ordinal)`` for every station of an OCL stream.

    Only station headers are decoded.  Positions with an implausible zero
    coordinate, or a latitude outside the grid's band, are replaced by
    ``placeholder`` (a ``(lon, lat)`` known to be on land) so the track
    tool still emits a line for them.
    """
    # imported here: ocl_station imports this module
    from ocl_station import iter_stations

    bad_lon, bad_lat = placeholder
    for result in iter_stations(FieldReader(fp), want_profile=False):
        stn = result.station
        bad = ((is_zero(stn.lon) and not zero_lat_lon_okay(wmo_square, 'lon'))
               or (is_zero(stn.lat) and not zero_lat_lon_okay(wmo_square, 'lat'))
               or math.isnan(stn.lat)
               or not in_bathy_band(stn.lat))
        if bad:
            logger.debug('station %d: position %.4f %.4f replaced by placeholder',
                         stn.ordinal, stn.lon, stn.lat)
            yield bad_lon, bad_lat, stn.ordinal
        else:
            yield stn.lon, stn.lat, stn.ordinal


def write_positions(fp_in, fp_out, wmo_square, placeholder=(70.0, 30.0)):
    """Write a positions file for ``fp_in``; returns the station count."""
    n = 0
    for lon, lat, ordinal in station_positions(fp_in, wmo_square, placeholder):
        fp_out.write(f'{lon:f}  {lat:f} {ordinal}\n')
        n += 1
    return n


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------

def build_parser():
    p = argparse.ArgumentParser(
        prog='oclpos',
        description='Write "lon lat ordinal" for every station of an OCL '
                    'file, ready for a grid-track run.')
    p.add_argument('wmo_square', help='WMO square of the OCL file, e.g. 1207')
    p.add_argument('bad_lon', nargs='?', type=float, default=70.0,
                   help='placeholder longitude for implausible positions')
    p.add_argument('bad_lat', nargs='?', type=float, default=30.0,
                   help='placeholder latitude for implausible positions')
    p.add_argument('-i', dest='input', metavar='INFILE',
                   help='OCL file; default stdin')
    p.add_argument('-o', dest='output', metavar='OUTFILE',
                   help='positions file; default stdout')
    return p


def main(argv=None):
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=logging.WARNING,
                        format='%% %(name)s: %(levelname)s: %(message)s')

    fp_in = fp_out = None
    try:
        fp_in = open(args.input, 'r') if args.input else sys.stdin
        fp_out = open(args.output, 'w') if args.output else sys.stdout
        n = write_positions(fp_in, fp_out, args.wmo_square,
                            (args.bad_lon, args.bad_lat))
    except (OCLError, OSError) as e:
        print(f'oclpos: error: {e}', file=sys.stderr)
        return 1
    finally:
        if fp_in is not None and fp_in is not sys.stdin:
            fp_in.close()
        if fp_out is not None and fp_out is not sys.stdout:
            fp_out.close()
    logger.info('wrote %d positions', n)
    return 0


if __name__ == '__main__':
    sys.exit(main())
