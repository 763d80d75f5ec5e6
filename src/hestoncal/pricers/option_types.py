from enum import IntEnum
from typing import Iterable, Union

import numpy as np

from ..exceptions import InvalidInputError


class OptionType(IntEnum):
    """European option payoff type, using the 0/1 codes of the quote files."""
    CALL = 0
    PUT = 1


_OPTION_TYPE_ALIASES = {
    "call": OptionType.CALL,
    "c": OptionType.CALL,
    "put": OptionType.PUT,
    "p": OptionType.PUT,
}


def parse_option_type(code: Union[int, str, OptionType]) -> OptionType:
    """
    Convert a single option type code to an OptionType.

    Args:
        code: 0/1, "call"/"put" (or "c"/"p"), or an OptionType member

    Returns:
        The matching OptionType

    Raises:
        InvalidInputError: If the code is not recognised
    """
    if isinstance(code, OptionType):
        return code
    if isinstance(code, str):
        try:
            return _OPTION_TYPE_ALIASES[code.strip().lower()]
        except KeyError:
            raise InvalidInputError("option_type", f"Unknown option type: {code!r}") from None
    if isinstance(code, (int, np.integer, float, np.floating)) and float(code) in (0.0, 1.0):
        return OptionType(int(code))
    raise InvalidInputError("option_type", f"Unknown option type: {code!r}")


def parse_option_types(codes: Union[Iterable, int, str, OptionType]) -> np.ndarray:
    """Vectorised parse_option_type; always returns a 1-D int array of 0/1 codes."""
    if np.ndim(codes) == 0:
        codes = [codes]
    codes = np.ravel(np.asarray(codes, dtype=object))
    return np.array([int(parse_option_type(c)) for c in codes], dtype=int)
