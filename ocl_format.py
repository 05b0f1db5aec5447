"""
OCL Station Format — field-level decoding
=========================================
Primitive field readers for NODC Ocean Climate Lab (OCL) station files,
the internal exchange format of the WOD98 CD set.

FILE STRUCTURE
--------------
An OCL file is a run of "stations" (one measurement event at a location
and time), written back to back as ASCII digits.  Newlines and carriage
returns may appear anywhere and are not content; each station ends with
whitespace up to the end of its last line.

Nothing in a station has a fixed offset.  Fields are either a known number
of digits, or describe their own length:

    Field kind        Encoding                          Example
    ----------        --------                          -------
    fixed digits      exactly n digits                  '1987'  (year, n=4)
    var-length int    L, then L digits                  '3412' -> 412
    var-length float  S D P, then D digits; value =     '3321234' -> 12.34
                      digits / 10**P (S is ignored)
    no value          a single '-' where a length or    '-'
                      control digit would be

The very first field of a station is a var-length int holding the total
number of content bytes in the station (itself included).  Every read
after that is counted against this budget, which is what lets a reader
abandon a station at any point by discarding the remaining bytes
unparsed.

ERRORS
------
    TruncatedStreamError   end of stream inside a field; the rest of the
                           file cannot be trusted, so the run must stop
    FieldFormatError       terminal character is neither a digit nor the
                           '-' no-value marker
    BathymetryError        companion bathymetry file is short or malformed
"""

import logging
import math
import re


logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

MAX_LEVELS = 6000      # obs-level profiles need this many; std-level ~40
MAX_VARS = 10          # variable columns seen in practice (2-digit count)

NO_VALUE = '-'
LINE_BREAKS = ('\n', '\r')

STATION_OBSERVED = 0   # station-type digit; anything else is standard-level

# Canonical standard-level depths (m), indexed by profile level
STANDARD_DEPTHS = (
    0, 10, 20, 30, 50, 75, 100, 125, 150, 200,
    250, 300, 400, 500, 600, 700, 800, 900, 1000, 1100,
    1200, 1300, 1400, 1500, 1750, 2000, 2500, 3000, 3500, 4000,
    4500, 5000, 5500, 6000, 6500, 7000, 7500, 8000, 8500, 9000,
)

_LEADING_INT = re.compile(r'\s*([-+]?\d+)')


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class OCLError(Exception):
    """Base exception for OCL decoding errors."""

    pass


class TruncatedStreamError(OCLError):
    """End of stream reached in the middle of a field."""

    pass


class FieldFormatError(OCLError):
    """A field ended on a character that is not a digit or the no-value marker."""

    pass


class BathymetryError(OCLError):
    """Missing or malformed line in a bathymetry companion file."""

    pass


# ---------------------------------------------------------------------------
# Field reader
# ---------------------------------------------------------------------------

class FieldReader:
    """Sequential field decoder over one OCL character stream.

    The reader owns the byte budget of the station currently being decoded.
    ``bytes_left`` is None until the station's total-byte field has been
    read, after which every consuming read decrements it by the number of
    content characters taken.  ``consumed`` counts the same characters from
    the start of the station and is never adjusted.

    Parameters
    ----------
    fp : file-like
        Text stream (or binary stream of ASCII) opened by the caller.
        Only ``read(1)`` and ``readline()`` are used, so pipes and
        decompressed streams work as well as files.
    """

    def __init__(self, fp):
        self.fp = fp
        self.bytes_left = None
        self.consumed = 0
        self._pushback = ''

    def begin_station(self):
        """Reset the budget ahead of a new station."""
        self.bytes_left = None
        self.consumed = 0

    # -- raw character access ----------------------------------------------

    def _getc(self):
        if self._pushback:
            ch, self._pushback = self._pushback, ''
            return ch
        ch = self.fp.read(1)
        if isinstance(ch, bytes):
            ch = ch.decode('ascii', errors='replace')
        return ch

    def _content_char(self):
        """Next character that is not a line break; '' at end of stream."""
        ch = self._getc()
        while ch in LINE_BREAKS:
            ch = self._getc()
        return ch

    def _spend(self, n):
        if self.bytes_left is not None:
            self.bytes_left -= n

    # -- primitive fields --------------------------------------------------

    def read_digits(self, n):
        """Read exactly ``n`` content characters as an integer.

        Does not touch the budget; see :meth:`read_fixed`.

        Returns
        -------
        int or None
            None for a zero-length field (``n == 0``, or a lone '-').

        Raises
        ------
        TruncatedStreamError
            End of stream before ``n`` characters were read.
        FieldFormatError
            The last character is neither a digit nor the no-value marker.
        """
        chars = []
        for _ in range(n):
            ch = self._content_char()
            if ch == '':
                raise TruncatedStreamError(
                    f'unexpected end of stream reading a {n}-digit field '
                    f'(got {"".join(chars)!r}) - empty or truncated input?')
            chars.append(ch)
        self.consumed += n

        text = ''.join(chars)
        if n > 0 and text[-1].isdigit():
            m = _LEADING_INT.match(text)
            if m is None:
                raise FieldFormatError(f'cannot parse {n}-digit field {text!r}')
            return int(m.group(1))
        if n == 0 or (n == 1 and text == NO_VALUE):
            return None
        raise FieldFormatError(f'unexpected character in {n}-digit field {text!r}')

    def read_fixed(self, n):
        """Fixed-width digit field, counted against the budget."""
        value = self.read_digits(n)
        self._spend(n)
        return value

    def read_varlen_int(self, missing=None):
        """Read a self-length-prefixed integer field.

        The first one of these in a station is its total byte count, and
        initialises the budget from its own value.

        Parameters
        ----------
        missing : object
            Returned in place of a zero-length field.
        """
        length = self.read_digits(1)
        self._spend(1)
        if length is None:
            # '-' in the length position carries no digits either
            length = 0

        value = self.read_digits(length)
        if value is None:
            return missing

        if self.bytes_left is None:
            self.bytes_left = value - length - 1
            logger.debug('station budget set: %d bytes declared', value)
        else:
            self.bytes_left -= length
        return value

    def read_varlen_float(self, missing=math.nan):
        """Read a self-describing float field.

        A '-' in place of the first control digit marks the whole field as
        absent and ``missing`` is returned after consuming that one byte.
        Unreadable digit or precision counts give nan.
        """
        sig_digits = self.read_digits(1)
        self._spend(1)
        if sig_digits is None:
            return missing

        total_digits = self.read_digits(1)
        self._spend(1)
        precision = self.read_digits(1)
        self._spend(1)
        if total_digits is None:
            total_digits = 0

        raw = self.read_digits(total_digits)
        self._spend(total_digits)
        if raw is None or precision is None:
            return math.nan
        return raw / 10.0 ** precision

    def read_error_code(self):
        """Single-digit quality flag following a value; -1 if marked empty."""
        code = self.read_fixed(1)
        return -1 if code is None else code

    # -- skipping ----------------------------------------------------------

    def skip(self, n, strict=False):
        """Discard ``n`` content characters without interpreting them.

        Used for the character/PI and biological blocks, whose bytes are
        not digits.  With ``strict`` a stream that ends first raises
        TruncatedStreamError; otherwise the skip stops quietly at the end.
        """
        taken = 0
        while taken < n:
            if self._content_char() == '':
                if strict:
                    raise TruncatedStreamError(
                        f'unexpected end of stream skipping a {n}-byte block '
                        f'(got {taken})')
                break
            taken += 1
        self.consumed += taken
        self._spend(taken)
        return taken

    def skip_to_next_station(self):
        """Drop what is left of the station budget, then the rest of the line.

        With a negative or unset budget only the line remainder is dropped.
        Returns the number of content bytes skipped before the line tail.
        """
        remaining = self.bytes_left if self.bytes_left is not None else 0
        skipped = self.skip(remaining) if remaining > 0 else 0
        # trailing blanks up to (and including) the end of this line
        self.fp.readline()
        return skipped

    def at_end(self):
        """True when only whitespace remains in the stream.

        Leaves the first character of the next station pushed back.
        """
        ch = self._getc()
        while ch != '' and ch.isspace():
            ch = self._getc()
        if ch == '':
            return True
        self._pushback = ch
        return False
