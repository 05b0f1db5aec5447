"""
OCL Station Reader
==================
Decodes and filters stations of NODC Ocean Climate Lab (OCL) files, one
station per call, straight off a forward-only stream.

Ref: NODC/OCL "format.txt" and readme v1 (World Ocean Database 1998 CDs).
Note that format.txt describes the profile as "depth, value" per level;
each level actually carries one value per declared variable.

STATION LAYOUT
--------------
Fields in file order.  int = var-length int, float = var-length float,
Nd = N fixed digits (see ocl_format).

    Section            Field                      Kind     Notes
    -------            -----                      ----     -----
    header             bytes in station           int      starts the budget
                       OCL station number         int
                       country code               2d
                       cruise number              int
                       year / month / day         4d/2d/2d
                       time (hours)               float
                       latitude / longitude       float
                       number of levels           int
                       station type               1d       0=observed,
                                                           else standard
                       number of variables        2d
                       per variable: code         int      Table 4 codes
                                     error flag   1d
    char / PI          bytes in block             int      skipped unread
    secondary header   bytes in block             int
                       number of entries          int
                       per entry: code            int      10 = bottom depth
                                  value           float
    biological         bytes in block             int      skipped unread
    profile            per level: depth + flag    float+1d observed only
                       per variable: value + flag float+1d

Reading stops early, with the rest of the station discarded unparsed, when
the caller is skipping ahead to a later station, or when the station fails
the filter criteria, or when the profile is not wanted and the bottom depth
is already known from the header or the bathymetry file.

BOTTOM DEPTH
------------
One bottom depth is chosen per station, tagged with where it came from:

    'header'    secondary header code 10
    'database'  bathymetry companion file (see ocl_bathy), used inside
                +/-72 deg latitude when there is no header depth or the
                two disagree by more than 80 m
    'profile'   deepest decoded profile level, when neither of the above
                exists or both are shallower than the profile itself
"""

import argparse
import gzip
import logging
import math
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Sequence, Tuple

import numpy as np

from ocl_bathy import (BATHY_LAT_LIMIT, BathyReader, in_bathy_band, is_zero,
                       zero_lat_lon_okay)
from ocl_format import (MAX_LEVELS, MAX_VARS, STANDARD_DEPTHS, STATION_OBSERVED,
                        FieldReader, OCLError)


logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

SUCCESS = 'success'
SKIPPED = 'skipped'

SOURCE_HEADER = 'header'
SOURCE_DATABASE = 'database'
SOURCE_PROFILE = 'profile'

BOTTOM_DEPTH_CODE = 10     # secondary header code for bottom depth
BATHY_TOLERANCE = 80.0     # m; header vs database disagreement limit

# Variable codes (NODC OCL readme, Table 4): code -> (label, units)
VARIABLES = {
    1:  ('Temp',  'deg C'),
    2:  ('Sal',   'ppt'),
    3:  ('Oxy',   'ml/l'),
    4:  ('Phos',  'micromolar'),
    6:  ('Silic', 'micromolar'),
    7:  ('Nitri', 'micromolar'),
    8:  ('Nitra', 'micromolar'),
    9:  ('pH',    'unitless'),
    11: ('Chlor', 'ug/l'),
    17: ('Alka',  'meq/l'),
    25: ('Pres',  'dbars'),
}


@dataclass(frozen=True)
class BottomDepth:
    """Selected bottom depth (m, positive down) and where it came from."""
    value: float
    source: str


@dataclass(frozen=True)
class SecondaryHeaderEntry:
    code: int
    value: float


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------

@dataclass
class Station:
    """One decoded OCL station.

    Identifier-like fields hold -1 when the file marks them as empty;
    numeric fields hold nan.  Profile arrays are empty unless the profile
    was actually read (``profile_read``).
    """
    ordinal: int
    bytes_in_station: int = 0
    station_number: int = -1
    country_code: int = -1
    cruise_number: int = -1
    year: int = -1
    month: int = -1
    day: int = -1
    time: float = math.nan
    lat: float = math.nan
    lon: float = math.nan
    n_levels: int = 0
    station_type: int = STATION_OBSERVED
    var_codes: list = field(default_factory=list)
    var_errors: list = field(default_factory=list)
    bytes_in_char_pi: int = 0
    bytes_in_sec_hdr: int = 0
    secondary_header: list = field(default_factory=list)
    bytes_in_bio_hdr: int = 0
    depth: np.ndarray = field(default_factory=lambda: np.empty(0))
    depth_errors: np.ndarray = field(default_factory=lambda: np.empty(0, dtype=np.int8))
    values: np.ndarray = field(default_factory=lambda: np.empty((0, 0)))
    value_errors: np.ndarray = field(default_factory=lambda: np.empty((0, 0), dtype=np.int8))
    database_depth: Optional[float] = None
    bottom_depth: Optional[BottomDepth] = None
    profile_read: bool = False

    @property
    def is_observed(self):
        return self.station_type == STATION_OBSERVED

    @property
    def header_bottom_depth(self):
        """Bottom depth from the secondary header, or None."""
        found = None
        for entry in self.secondary_header:
            if entry.code == BOTTOM_DEPTH_CODE and not math.isnan(entry.value):
                found = entry.value
        return found

    @property
    def deepest_depth(self):
        """Depth of the last decoded profile level, or None."""
        if len(self.depth) == 0:
            return None
        return float(self.depth[-1])

    def variable(self, code):
        """Profile values for one variable code (raises KeyError if absent)."""
        try:
            k = self.var_codes.index(code)
        except ValueError:
            raise KeyError(f'station {self.ordinal} has no variable {code}') from None
        return self.values[k]

    def flagged_levels(self, var_list=None):
        """Boolean mask of profile levels holding bad data.

        A level is flagged when any variable named in ``var_list`` has a
        nonzero error code or no value on it.  Codes the station does not
        declare are ignored, and with no ``var_list`` nothing is flagged.
        """
        flagged = np.zeros(len(self.depth), dtype=bool)
        if not var_list:
            return flagged
        for k, code in enumerate(self.var_codes):
            if code in var_list:
                flagged |= (self.value_errors[k] != 0) | np.isnan(self.values[k])
        return flagged

    def good_levels(self, var_list=None):
        """Inverse of :meth:`flagged_levels`."""
        return ~self.flagged_levels(var_list)


@dataclass
class FilterCriteria:
    """Station selection criteria; None disables a check.

    All ranges are inclusive.  ``lat_lon_box`` is (west, east, south,
    north) in the longitude convention of the data; boxes do not wrap.
    ``wmo_square`` enables the zero lat/lon plausibility check.
    """
    var_list: Optional[Sequence[int]] = None
    lat_lon_box: Optional[Tuple[float, float, float, float]] = None
    year_range: Optional[Tuple[int, int]] = None
    month_range: Optional[Tuple[int, int]] = None
    min_levels: Optional[int] = None
    wmo_square: Optional[str] = None


@dataclass
class FilterFlags:
    vars_ok: bool = True
    lat_lon_valid: bool = True
    in_region: bool = True
    year_ok: bool = True
    month_ok: bool = True
    enough_levels: bool = True

    @property
    def passed(self):
        return (self.vars_ok and self.lat_lon_valid and self.in_region
                and self.year_ok and self.month_ok and self.enough_levels)


@dataclass(frozen=True)
class StationResult:
    outcome: str                    # SUCCESS or SKIPPED
    station: Station
    flags: Optional[FilterFlags]    # None for skipped stations


# ---------------------------------------------------------------------------
# Filter evaluation
# ---------------------------------------------------------------------------

def check_variables(required, var_codes, var_errors):
    """True if every required code is declared and none of them is flagged."""
    for code in required:
        matches = [err for c, err in zip(var_codes, var_errors) if c == code]
        if not matches or any(err > 0 for err in matches):
            return False
    return True


def evaluate_filters(station, criteria=None):
    """Compute the :class:`FilterFlags` of a station's header fields."""
    flags = FilterFlags()
    if criteria is None:
        return flags

    if criteria.var_list is not None:
        flags.vars_ok = check_variables(criteria.var_list, station.var_codes,
                                        station.var_errors)

    if criteria.wmo_square is not None:
        bad_lat = is_zero(station.lat) and not zero_lat_lon_okay(criteria.wmo_square, 'lat')
        bad_lon = is_zero(station.lon) and not zero_lat_lon_okay(criteria.wmo_square, 'lon')
        flags.lat_lon_valid = not (bad_lat or bad_lon)

    if criteria.lat_lon_box is not None:
        west, east, south, north = criteria.lat_lon_box
        flags.in_region = not (station.lon < west or station.lon > east
                               or station.lat < south or station.lat > north)

    if criteria.year_range is not None:
        lo, hi = criteria.year_range
        flags.year_ok = lo <= station.year <= hi

    if criteria.month_range is not None:
        lo, hi = criteria.month_range
        flags.month_ok = lo <= station.month <= hi

    if criteria.min_levels is not None:
        flags.enough_levels = station.n_levels >= criteria.min_levels

    return flags


# ---------------------------------------------------------------------------
# Bottom depth
# ---------------------------------------------------------------------------

def resolve_bottom_depth(header_depth, database_depth=None, lat=math.nan,
                         lat_limit=BATHY_LAT_LIMIT, tolerance=BATHY_TOLERANCE):
    """First-pass bottom depth, before any profile is read.

    Parameters
    ----------
    header_depth : float or None
        Secondary header code 10 value.
    database_depth : float or None
        Positive-down bathymetry value, None when no bathy file is used.
    lat : float
        Station latitude; the database is only trusted inside
        +/- ``lat_limit``.

    Returns
    -------
    BottomDepth or None
    """
    decision = None
    if header_depth is not None:
        decision = BottomDepth(header_depth, SOURCE_HEADER)

    if database_depth is not None and in_bathy_band(lat, lat_limit):
        if decision is None or abs(decision.value - database_depth) > tolerance:
            decision = BottomDepth(database_depth, SOURCE_DATABASE)
    return decision


def finalize_bottom_depth(decision, deepest, database_depth=None):
    """Second-pass bottom depth, checked against the deepest profile level.

    The result is never shallower than ``deepest``.  A shallow header depth
    is replaced by the database value when that one is deep enough, and by
    the profile depth otherwise; a shallow database depth goes straight to
    the profile depth.
    """
    if deepest is None or math.isnan(deepest):
        return decision
    if decision is None:
        return BottomDepth(deepest, SOURCE_PROFILE)
    if decision.value >= deepest:
        return decision
    if (decision.source == SOURCE_HEADER and database_depth is not None
            and database_depth >= deepest):
        return BottomDepth(database_depth, SOURCE_DATABASE)
    return BottomDepth(deepest, SOURCE_PROFILE)


# ---------------------------------------------------------------------------
# Station reader
# ---------------------------------------------------------------------------

def _or(value, default):
    return default if value is None else value


def _read_header(reader, stn):
    stn.country_code = _or(reader.read_fixed(2), -1)
    stn.cruise_number = reader.read_varlen_int(missing=-1)
    stn.year = _or(reader.read_fixed(4), -1)
    stn.month = _or(reader.read_fixed(2), -1)
    stn.day = _or(reader.read_fixed(2), -1)
    stn.time = reader.read_varlen_float()
    stn.lat = reader.read_varlen_float()
    stn.lon = reader.read_varlen_float()
    stn.n_levels = reader.read_varlen_int(missing=0)
    stn.station_type = _or(reader.read_fixed(1), -1)

    n_vars = _or(reader.read_fixed(2), 0)
    if n_vars > MAX_VARS:
        logger.warning('station %d: %d variables declared, more than the usual %d',
                       stn.ordinal, n_vars, MAX_VARS)
    for _ in range(n_vars):
        stn.var_codes.append(reader.read_varlen_int(missing=-1))
        stn.var_errors.append(reader.read_error_code())


def _read_secondary_header(reader, stn):
    nbytes = reader.read_varlen_int()
    if nbytes is None:
        return
    stn.bytes_in_sec_hdr = nbytes
    n_entries = reader.read_varlen_int(missing=0)
    for _ in range(n_entries):
        code = reader.read_varlen_int(missing=-1)
        value = reader.read_varlen_float()
        stn.secondary_header.append(SecondaryHeaderEntry(code, value))


def _read_profile(reader, stn, max_levels):
    n_levels = max(stn.n_levels, 0)
    if n_levels > max_levels:
        logger.warning('station %d: %d levels declared > max_levels=%d; '
                       'bottom depth may be too shallow and only the first '
                       '%d levels are kept', stn.ordinal, n_levels,
                       max_levels, max_levels)
        n_levels = max_levels

    n_vars = len(stn.var_codes)
    depth = np.full(n_levels, np.nan)
    depth_errors = np.full(n_levels, -1, dtype=np.int8)
    values = np.full((n_vars, n_levels), np.nan)
    value_errors = np.full((n_vars, n_levels), -1, dtype=np.int8)

    observed = stn.is_observed
    if not observed and n_levels > len(STANDARD_DEPTHS):
        logger.warning('station %d: %d standard levels but only %d standard '
                       'depths; deeper levels get nan depth', stn.ordinal,
                       n_levels, len(STANDARD_DEPTHS))

    for j in range(n_levels):
        if observed:
            d = reader.read_varlen_float(missing=None)
            if d is not None:
                depth[j] = d
                depth_errors[j] = reader.read_error_code()
        elif j < len(STANDARD_DEPTHS):
            depth[j] = STANDARD_DEPTHS[j]

        for k in range(n_vars):
            v = reader.read_varlen_float(missing=None)
            if v is not None:
                values[k, j] = v
                value_errors[k, j] = reader.read_error_code()

    stn.depth = depth
    stn.depth_errors = depth_errors
    stn.values = values
    stn.value_errors = value_errors
    stn.profile_read = True


def read_station(reader, ordinal, criteria=None, want_profile=True,
                 skip_to=None, bathy=None, max_levels=MAX_LEVELS):
    """Decode one station from the stream.

    Parameters
    ----------
    reader : FieldReader or file-like
        Stream positioned at the start of a station.  Pass the same
        FieldReader on every call when reading a whole file.
    ordinal : int
        Position of this station in the file, counting from 0.
    criteria : FilterCriteria or None
        Stations failing any check are not decoded past their secondary
        header.
    want_profile : bool
        If False the profile is only read when needed to find a bottom
        depth.
    skip_to : int or None
        Stations before this ordinal are skipped after their first two
        fields.
    bathy : BathyReader or None
        Companion bathymetry file; advanced exactly one line per call.
    max_levels : int
        Profile levels beyond this are dropped with a warning.

    Returns
    -------
    StationResult
        ``(outcome, station, flags)``; flags is None for skipped stations.
        The caller decides output eligibility with :func:`station_passes`.

    Raises
    ------
    TruncatedStreamError, FieldFormatError, BathymetryError
    """
    if not isinstance(reader, FieldReader):
        reader = FieldReader(reader)
    reader.begin_station()
    stn = Station(ordinal)

    stn.bytes_in_station = reader.read_varlen_int(missing=0)
    stn.station_number = reader.read_varlen_int(missing=-1)

    if skip_to is not None and ordinal < skip_to:
        skipped = reader.skip_to_next_station()
        if bathy is not None:
            bathy.next_record()
        logger.debug('station %d: skipped %d bytes on the way to station %d',
                     ordinal, skipped, skip_to)
        return StationResult(SKIPPED, stn, None)

    _read_header(reader, stn)

    # character data and principal investigator block
    nbytes = reader.read_varlen_int()
    if nbytes is not None:
        stn.bytes_in_char_pi = nbytes
        reader.skip(nbytes, strict=True)

    _read_secondary_header(reader, stn)

    if bathy is not None:
        stn.database_depth = bathy.next_record().depth
    stn.bottom_depth = resolve_bottom_depth(stn.header_bottom_depth,
                                            stn.database_depth, stn.lat)

    flags = evaluate_filters(stn, criteria)
    really_want_profile = want_profile or stn.bottom_depth is None

    if really_want_profile and flags.passed:
        # biological header; taxonomic/biomass data sits inside it
        nbytes = reader.read_varlen_int()
        if nbytes is not None:
            stn.bytes_in_bio_hdr = nbytes
            reader.skip(nbytes, strict=True)

        _read_profile(reader, stn, max_levels)
        stn.bottom_depth = finalize_bottom_depth(stn.bottom_depth,
                                                 stn.deepest_depth,
                                                 stn.database_depth)

    reader.skip_to_next_station()
    return StationResult(SUCCESS, stn, flags)


# ---------------------------------------------------------------------------
# File-level driver
# ---------------------------------------------------------------------------

@dataclass
class StationStatistics:
    stations_output: int = 0
    stations_total: int = 0
    bytes_output: int = 0
    bytes_total: int = 0


def iter_stations(fp, criteria=None, want_profile=True, skip_to=None,
                  bathy=None, max_levels=MAX_LEVELS):
    """Yield a :class:`StationResult` for every station until end of stream.

    ``bathy`` may be a BathyReader or an open bathy file.
    """
    reader = fp if isinstance(fp, FieldReader) else FieldReader(fp)
    if bathy is not None and not isinstance(bathy, BathyReader):
        bathy = BathyReader(bathy)

    ordinal = 0
    while not reader.at_end():
        yield read_station(reader, ordinal, criteria=criteria,
                           want_profile=want_profile, skip_to=skip_to,
                           bathy=bathy, max_levels=max_levels)
        ordinal += 1


def station_passes(result, depth_range=None):
    """Output eligibility: every filter flag, plus the bottom-depth range.

    Stations without a resolved bottom depth are not cut by
    ``depth_range`` (shallow, deep).
    """
    if result.outcome != SUCCESS or not result.flags.passed:
        return False
    bottom = result.station.bottom_depth
    if depth_range is not None and bottom is not None:
        shallow, deep = depth_range
        return shallow <= bottom.value <= deep
    return True


def filter_stations(fp, criteria=None, depth_range=None, limit=None, **kwargs):
    """Yield the stations that pass, stopping after ``limit`` of them.

    Extra keyword arguments go to :func:`iter_stations`.
    """
    if limit is not None and limit <= 0:
        return
    n = 0
    for result in iter_stations(fp, criteria=criteria, **kwargs):
        if station_passes(result, depth_range):
            yield result.station
            n += 1
            if limit is not None and n >= limit:
                return


def collect_statistics(results, depth_range=None, limit=None):
    """Station and byte counts for a run, as reported by ``oclfilt -e``.

    Skipped stations count towards ``stations_total`` only.
    """
    stats = StationStatistics()
    for result in results:
        stats.stations_total += 1
        if result.outcome != SUCCESS:
            continue
        stats.bytes_total += result.station.bytes_in_station
        if station_passes(result, depth_range):
            stats.stations_output += 1
            stats.bytes_output += result.station.bytes_in_station
            if limit is not None and stats.stations_output >= limit:
                break
    return stats


# ---------------------------------------------------------------------------
# Summaries
# ---------------------------------------------------------------------------

SUMMARY_HEADER = (
    '%  stn year mo dy  time       lat       lon   bytes numlvls botdepth  vars\n'
    '%----- ---- -- -- ----- --------- --------- ------- ------- --------  ----------'
)


def variable_label(code):
    return VARIABLES.get(code, (f'Var{code}', ''))[0]


def summary_line(station):
    """One-line header summary; '*' marks variables with an error flag."""
    if station.bottom_depth is not None:
        bottom = f'{station.bottom_depth.value:6.1f} {station.bottom_depth.source[0]}'
    else:
        bottom = '   --  -'
    vars_str = ','.join(f'{code}*' if err > 0 else f'{code}'
                        for code, err in zip(station.var_codes, station.var_errors))
    if not vars_str:
        vars_str = '  --  '
    return (f'{station.ordinal:6d} {station.year:4d} {station.month:2d} '
            f'{station.day:2d} {station.time:5.2f} {station.lat:9.4f} '
            f'{station.lon:9.4f} {station.bytes_in_station:7d} '
            f'{station.n_levels:7d} {bottom:>8s}  {vars_str:<9s}')


def profile_header(station):
    """Comment lines introducing a station's profile rows."""
    if station.bottom_depth is not None:
        bottom = f'{station.bottom_depth.value:.2f} m'
        source = station.bottom_depth.source[0]
    else:
        bottom, source = '[no data]', '-'
    kind = 'observed' if station.is_observed else 'standard'
    labels = [VARIABLES.get(code, (f'Var{code}', ''))[0] for code in station.var_codes]
    units = [VARIABLES.get(code, ('', '?'))[1] for code in station.var_codes]
    return ['%',
            f'%Station #{station.ordinal}, bottom depth {bottom:>9s} '
            f'(from {source}),  {kind} level data',
            ', '.join(['%Columns: Lat', 'Lon', 'Year', 'Month', 'Day', 'Time',
                       'Depth'] + labels),
            ', '.join(['%Units:   deg', 'deg', 'yyyy', 'mm', 'dd', 'hrs', 'm']
                      + units)]


def profile_rows(station, var_list=None, include_flagged=False):
    """Yield one text row per profile level.

    Levels flagged by :meth:`Station.flagged_levels` are dropped unless
    ``include_flagged`` is set, in which case every value is followed by
    its error code in parentheses.
    """
    keep = station.good_levels(var_list)
    head = (f'{station.lat:.4f}  {station.lon:.4f}  {station.year:4d} '
            f'{station.month:2d} {station.day:2d} {station.time:.2f}')
    for j in range(len(station.depth)):
        if not (keep[j] or include_flagged):
            continue
        parts = [f'{head}  {station.depth[j]:.2f}']
        if include_flagged:
            parts.append(f' ({station.depth_errors[j]})')
        for k in range(len(station.var_codes)):
            parts.append(f'  {station.values[k, j]:.3f}')
            if include_flagged:
                parts.append(f' ({station.value_errors[k, j]})')
        yield ''.join(parts)


def station_dump(station):
    """Every decoded field of a station, one ``name(ordinal)=value`` per line."""
    i = station.ordinal
    lines = [f'bytesInStation({i})={station.bytes_in_station}',
             f'stationNumber({i})={station.station_number}',
             f'countryCode({i})={station.country_code}',
             f'cruiseNumber({i})={station.cruise_number}',
             f'date({i})={station.year}-{station.month}-{station.day}',
             f'time({i})={station.time:f}',
             f'lat({i})={station.lat:f}',
             f'lon({i})={station.lon:f}',
             f'numberOfLevels({i})={station.n_levels}',
             f'stationType({i})={station.station_type}']
    for code, err in zip(station.var_codes, station.var_errors):
        lines.append(f'  varCode={code:3d}     errCode={err}')
    lines += [f'bytesInCharPI({i})={station.bytes_in_char_pi}',
              f'bytesInSecHdr({i})={station.bytes_in_sec_hdr}',
              f'bytesInBioHdr({i})={station.bytes_in_bio_hdr}']
    for j, entry in enumerate(station.secondary_header):
        lines.append(f'  secHdrCode({j:2d})={entry.code:3d}     '
                     f'secHdrValue({j:2d})={entry.value:f}')
    lines.append('depth, var1, var2, etc:')
    lines += list(profile_rows(station, include_flagged=True))
    bottom = station.bottom_depth
    lines.append(f'bottomDepth({i})=' + (
        f'{bottom.value:f} ({bottom.source})' if bottom is not None else 'none'))
    return lines


def plot_station(station, outpath=None):
    """Plot each variable against depth, with the resolved bottom depth.

    Parameters
    ----------
    station : Station
        Must have its profile read.
    outpath : str or Path or None
        Save to this file instead of showing the figure.
    """
    import matplotlib
    if outpath:
        matplotlib.use('Agg')
    import matplotlib.pyplot as plt

    n_vars = max(len(station.var_codes), 1)
    fig, axes = plt.subplots(1, n_vars, figsize=(3.5 * n_vars, 6),
                             sharey=True, squeeze=False)
    axes = axes[0]
    for k, code in enumerate(station.var_codes):
        ax = axes[k]
        label, units = VARIABLES.get(code, (f'Var{code}', ''))
        ax.plot(station.values[k], station.depth, '.-', lw=0.8, ms=3)
        ax.set_xlabel(f'{label} ({units})' if units else label, fontsize=9)
        ax.tick_params(labelsize=8)
        if station.bottom_depth is not None:
            ax.axhline(station.bottom_depth.value, color='saddlebrown', lw=1.2,
                       label=f'bottom ({station.bottom_depth.source})')
    axes[0].set_ylabel('Depth (m)', fontsize=9)
    axes[0].invert_yaxis()
    if station.bottom_depth is not None and station.var_codes:
        axes[0].legend(fontsize=8, framealpha=0.7)
    kind = 'observed' if station.is_observed else 'standard'
    fig.suptitle(f'Station #{station.ordinal}  {station.year:04d}-'
                 f'{station.month:02d}-{station.day:02d}  '
                 f'{station.lat:.4f}, {station.lon:.4f}  ({kind} levels)',
                 fontsize=11)
    fig.tight_layout()

    if outpath:
        fig.savefig(outpath, dpi=150, bbox_inches='tight')
        logger.info('saved plot: %s', outpath)
    else:
        plt.show()
    plt.close(fig)


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------

def _pair(text, cast=int):
    parts = text.split(',')
    if len(parts) != 2:
        raise argparse.ArgumentTypeError(f'expected <min>,<max>, got {text!r}')
    return cast(parts[0]), cast(parts[1])


def _region(text):
    parts = text.split('/')
    if len(parts) != 4:
        raise argparse.ArgumentTypeError(
            f'expected <west>/<east>/<south>/<north>, got {text!r}')
    return tuple(float(p) for p in parts)


def _var_list(text):
    return [int(v) for v in text.split(',') if v]


def _open_text(path):
    if path == '-':
        return sys.stdin
    if str(path).endswith('.gz'):
        return gzip.open(path, 'rt')
    return open(path, 'r')


def build_parser():
    p = argparse.ArgumentParser(
        prog='oclfilt',
        description='Filter stations of an NODC/OCL file and write their '
                    'profile data or a one-line summary of each.')
    p.add_argument('input', nargs='?', default='-',
                   help='OCL file (.gz accepted); default stdin')
    p.add_argument('-o', dest='output', metavar='OUTFILE',
                   help='write output here instead of stdout')
    p.add_argument('-b', dest='depth_range', type=lambda s: _pair(s, float),
                   metavar='SHALLOW,DEEP', help='bottom depth range (m)')
    p.add_argument('-d', dest='bathy', metavar='BATHYFILE',
                   help='lon/lat/ordinal/depth file matching the input')
    p.add_argument('-e', dest='end_stats', action='store_true',
                   help='no profile output, only end statistics')
    p.add_argument('-f', dest='full', action='store_true',
                   help='dump every decoded field of each output station')
    p.add_argument('-q', dest='query', action='store_true',
                   help='one summary line per station instead of profiles')
    p.add_argument('-r', dest='include_flagged', action='store_true',
                   help='keep error-flagged levels and print error codes')
    p.add_argument('-l', dest='region', type=_region, metavar='W/E/S/N',
                   help='lat/lon box, inclusive')
    p.add_argument('-m', dest='months', type=_pair, metavar='MIN,MAX')
    p.add_argument('-y', dest='years', type=_pair, metavar='MIN,MAX')
    p.add_argument('-n', dest='limit', type=int, metavar='N',
                   help='stop after N output stations')
    p.add_argument('-p', dest='min_levels', type=int, metavar='LEVELS',
                   help='minimum number of profile levels')
    p.add_argument('-s', dest='skip_to', type=int, metavar='STATION',
                   help='start at this station number (counting from 0)')
    p.add_argument('-t', dest='titles', action='store_false',
                   help='omit the column headers')
    p.add_argument('-v', dest='var_list', type=_var_list, metavar='CODES',
                   help='required variable codes, e.g. 1,2; levels with bad '
                        'or missing data in them are dropped')
    p.add_argument('-w', dest='wmo_square', metavar='WMOSQ',
                   help='reject implausible zero lat/lon for this WMO square')
    p.add_argument('--max-levels', type=int, default=MAX_LEVELS)
    p.add_argument('--plot', metavar='DIR',
                   help='save a profile plot per output station into DIR')
    p.add_argument('--debug', action='store_true')
    return p


def main(argv=None):
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.debug else logging.WARNING,
                        format='%% %(name)s: %(levelname)s: %(message)s')

    criteria = FilterCriteria(var_list=args.var_list, lat_lon_box=args.region,
                              year_range=args.years, month_range=args.months,
                              min_levels=args.min_levels,
                              wmo_square=args.wmo_square)
    plot_dir = Path(args.plot) if args.plot else None
    want_profile = not args.end_stats or args.full or plot_dir is not None

    def write(line):
        out.write(line + '\n')

    def report(results):
        for result in results:
            if station_passes(result, args.depth_range):
                stn = result.station
                if args.full:
                    for line in station_dump(stn):
                        write(line)
                elif args.query:
                    write(summary_line(stn))
                elif not args.end_stats:
                    if args.titles:
                        for line in profile_header(stn):
                            write(line)
                    for line in profile_rows(stn, args.var_list,
                                             args.include_flagged):
                        write(line)
                    logger.debug('station %d: %d error-flagged levels',
                                 stn.ordinal,
                                 int(stn.flagged_levels(args.var_list).sum()))
                if plot_dir is not None and stn.profile_read:
                    plot_station(stn, plot_dir / f'station_{stn.ordinal:06d}.png')
            yield result

    fp = fp_bathy = out = None
    try:
        fp = _open_text(args.input)
        fp_bathy = open(args.bathy, 'r') if args.bathy else None
        out = open(args.output, 'w') if args.output else sys.stdout
        if plot_dir is not None:
            plot_dir.mkdir(parents=True, exist_ok=True)

        if args.query and args.titles and not args.full:
            write(SUMMARY_HEADER)
        results = iter_stations(fp, criteria=criteria, want_profile=want_profile,
                                skip_to=args.skip_to, bathy=fp_bathy,
                                max_levels=args.max_levels)
        stats = collect_statistics(report(results), args.depth_range, args.limit)

        if args.end_stats or args.query:
            write('% summary value units: #Stns / total#Stns, Bytes / totalBytes')
            write(f'% summary:  {stats.stations_output} / {stats.stations_total} , '
                  f'{stats.bytes_output} / {stats.bytes_total}')
    except (OCLError, OSError) as e:
        print(f'oclfilt: error: {e}', file=sys.stderr)
        return 1
    finally:
        for f in (fp, fp_bathy, out):
            if f is not None and f is not sys.stdin and f is not sys.stdout:
                f.close()
    return 0


if __name__ == '__main__':
    sys.exit(main())
